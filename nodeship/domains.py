from .config import add_domain, find_domain, remove_domain_record
from .context import Context
from .nginx import render_nginx_config, wait_for_dns
from .utils import CommandError, DeployError, log, warn


def ensure_email(ctx: Context) -> str:
    """Returns the stored certificate email, asking for one the first time."""
    config = ctx.store.load()
    if config.get("email"):
        return config["email"]
    email = ctx.prompter.ask_email()
    with ctx.store.transaction() as config:
        config["email"] = email
    return email


def remove_domain(ctx: Context, domain: str) -> list[str]:
    """Removes site files, certificate and record; each step runs regardless.

    The record is deleted even when no nginx files exist.

    :return: warnings for the steps that failed
    """
    problems = []
    try:
        if ctx.proxy.remove_site(domain):
            ctx.proxy.reload()
            log(f"Nginx configuration removed for {domain}")
        else:
            warn(f"No nginx configuration found for {domain}")
    except (CommandError, OSError) as e:
        problems.append(f"nginx cleanup for {domain} failed: {e}")

    try:
        ctx.certbot.revoke(domain)
        log(f"SSL certificate removed for {domain}")
    except (CommandError, OSError) as e:
        problems.append(f"certificate removal for {domain} failed: {e}")

    with ctx.store.transaction() as config:
        remove_domain_record(config, domain)

    for problem in problems:
        warn(problem)
    return problems


def setup_domain(
    ctx: Context, domain: str, port: int | None, pid: str | None = None, *, wait_dns: bool = False
) -> bool:
    """Points ``domain`` at a local port through nginx and obtains a certificate.

    :param pid: project to record the domain against; None for the webhook relay
    :param wait_dns: poll DNS (bounded) before requesting the certificate
    :return: False if the user declined to overwrite an existing domain
    """
    if not port:
        raise DeployError(f"Cannot set up {domain}: the project has no port")

    ctx.proxy.ensure_installed()
    ctx.certbot.ensure_installed()

    if find_domain(ctx.store.load(), domain):
        if not ctx.prompter.confirm(
            f"Domain {domain} already exists. Overwrite its configuration?", default=False
        ):
            warn("Operation cancelled")
            return False
        remove_domain(ctx, domain)
    elif ctx.proxy.site_exists(domain):
        warn(f"Nginx files for {domain} exist but the domain is not tracked, overwriting them")

    if wait_dns:
        wait_for_dns(domain)

    ctx.proxy.write_site(domain, render_nginx_config(domain, port))
    ctx.proxy.reload()
    log(f"Nginx configuration created for {domain}")

    email = ensure_email(ctx)
    try:
        ctx.certbot.issue(domain, email)
    except CommandError as e:
        raise DeployError(f"Failed to obtain SSL certificate for {domain}: {e}") from e
    log(f"SSL certificate obtained and configured for {domain}")

    if pid is not None:
        with ctx.store.transaction() as config:
            add_domain(config, pid, domain)
    return True
