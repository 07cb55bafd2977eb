import os
import re
import tempfile
import time
from pathlib import Path
from textwrap import dedent

import dns.resolver

from .utils import CommandError, Shell, generate_pid, log, warn

DNS_VERIFY_RETRIES = 30
DNS_VERIFY_DELAY = 10

DOMAIN_RE = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
EMAIL_RE = re.compile(r"\S+@\S+\.\S+")


def validate_domain(value: str) -> bool:
    return bool(DOMAIN_RE.match(value.strip()))


def validate_email(value: str) -> bool:
    return bool(EMAIL_RE.search(value.strip()))


def resolve_dns_a(domain: str, nameserver: str = "8.8.8.8") -> str | None:
    """
    :param nameserver: DNS nameserver IP (default: 8.8.8.8)
    :return: First A record IP address, or None if resolution fails
    """
    try:
        resolver = dns.resolver.Resolver()
        resolver.nameservers = [nameserver]
        answer = resolver.resolve(domain, "A")
        return str(answer[0]) if answer else None
    except Exception:
        return None


def wait_for_dns(
    domain: str, retries: int = DNS_VERIFY_RETRIES, delay: int = DNS_VERIFY_DELAY
) -> str | None:
    """:return: resolved IP, or None once the retries run out"""
    log(f"Checking if {domain} points to this server...")
    for i in range(retries):
        resolved = resolve_dns_a(domain)
        if resolved:
            log(f"DNS verified: {domain} -> {resolved}")
            return resolved
        warn(f"Waiting for {domain} DNS... ({i + 1}/{retries})")
        time.sleep(delay)
    warn(f"{domain} does not resolve yet, continuing anyway")
    return None


def render_nginx_config(domain: str, port: int, zone: str | None = None) -> str:
    """Virtual host proxying ``domain`` to a local app on ``port``.

    :param zone: rate limit zone name, must be unique across enabled sites
    """
    zone = zone or f"zone_{generate_pid()}"
    return dedent(f"""
        limit_req_zone $binary_remote_addr zone={zone}:10m rate=30r/s;

        server {{
            listen 80;
            server_name {domain};

            location / {{
                limit_req zone={zone} burst=10 delay=10;

                proxy_pass http://localhost:{port};
                proxy_http_version 1.1;
                proxy_set_header Upgrade $http_upgrade;
                proxy_set_header Connection 'upgrade';
                proxy_set_header Host $host;
                proxy_set_header X-Real-IP $remote_addr;
                proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
                proxy_set_header X-Forwarded-Proto $scheme;
                proxy_set_header X-NginX-Proxy true;

                proxy_buffering on;
                proxy_buffer_size 256k;
                proxy_buffers 8 256k;
                proxy_busy_buffers_size 512k;
                proxy_temp_file_write_size 512k;
                proxy_max_temp_file_size 1024m;

                proxy_cache_bypass $http_upgrade;
                proxy_cache_use_stale error timeout http_500 http_502 http_503 http_504;
                proxy_cache_valid 200 60m;
                proxy_cache_valid 404 1m;
            }}

            location /_next/static {{
                proxy_pass http://localhost:{port};
                proxy_cache_bypass $http_upgrade;
                expires 365d;
                access_log off;
                add_header Cache-Control "public, no-transform, must-revalidate";
            }}

            location /static {{
                proxy_pass http://localhost:{port};
                proxy_cache_bypass $http_upgrade;
                expires 365d;
                access_log off;
                add_header Cache-Control "public, no-transform, must-revalidate";
            }}

            location ~* \\.(js|css|png|jpg|jpeg|gif|ico|svg|woff|woff2|ttf|eot)$ {{
                proxy_pass http://localhost:{port};
                proxy_cache_bypass $http_upgrade;
                expires 7d;
                add_header Cache-Control "public, no-transform, must-revalidate";
                etag on;
                if_modified_since exact;
                access_log off;
                log_not_found off;
            }}

            gzip on;
            gzip_types text/plain text/css application/json application/javascript text/xml application/xml application/xml+rss text/javascript;
            gzip_comp_level 6;
            gzip_min_length 1000;

            proxy_connect_timeout 60s;
            proxy_send_timeout 60s;
            proxy_read_timeout 60s;
            keepalive_timeout 65s;
            keepalive_requests 100;

            client_max_body_size 50M;

            access_log /var/log/nginx/{domain}-access.log combined buffer=512k flush=1m;
            error_log /var/log/nginx/{domain}-error.log warn;

            add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;
            add_header X-Content-Type-Options "nosniff" always;
            add_header X-Frame-Options "SAMEORIGIN" always;
            add_header X-XSS-Protection "1; mode=block" always;
            add_header Referrer-Policy "strict-origin-when-cross-origin" always;
            add_header Permissions-Policy "camera=(), microphone=(), geolocation=(), payment=()" always;
        }}
    """).strip() + "\n"


class NginxProxy:
    def __init__(self, root: Path | None = None, shell: Shell | None = None):
        root = Path(root or os.environ.get("NODESHIP_NGINX_DIR", "/etc/nginx"))
        self.sites_available = root / "sites-available"
        self.sites_enabled = root / "sites-enabled"
        self.shell = shell or Shell()

    def config_path(self, domain: str) -> Path:
        return self.sites_available / domain

    def symlink_path(self, domain: str) -> Path:
        return self.sites_enabled / domain

    def is_installed(self) -> bool:
        return self.shell.succeeds("nginx", "-v")

    def ensure_installed(self):
        if not self.is_installed():
            log("Installing nginx...")
            self.shell.run_privileged("apt-get", "install", "-y", "nginx", capture=False)

    def site_exists(self, domain: str) -> bool:
        return self.config_path(domain).exists() or self.symlink_path(domain).is_symlink()

    def write_site(self, domain: str, content: str):
        """Stages the config in /tmp, then moves it in and enables it."""
        with tempfile.NamedTemporaryFile("w", suffix=".conf", delete=False) as tmp:
            tmp.write(content)
            tmp_path = tmp.name
        os.chmod(tmp_path, 0o644)
        try:
            self.shell.run_privileged("mv", tmp_path, str(self.config_path(domain)))
        finally:
            Path(tmp_path).unlink(missing_ok=True)
        self.shell.run_privileged(
            "ln", "-sf", str(self.config_path(domain)), str(self.symlink_path(domain))
        )

    def remove_site(self, domain: str) -> bool:
        """:return: True if a config file or symlink was present"""
        if not self.site_exists(domain):
            return False
        self.shell.run_privileged(
            "rm", "-f", str(self.config_path(domain)), str(self.symlink_path(domain))
        )
        return True

    def reload(self):
        self.shell.run_privileged("nginx", "-t")
        self.shell.run_privileged("systemctl", "reload", "nginx")


class Certbot:
    def __init__(self, shell: Shell | None = None):
        self.shell = shell or Shell()

    def is_installed(self) -> bool:
        try:
            plugins = self.shell.run("certbot", "plugins")
        except (CommandError, OSError):
            return False
        return "nginx" in plugins

    def ensure_installed(self):
        if not self.is_installed():
            log("Installing certbot...")
            self.shell.run_privileged(
                "apt-get", "install", "-y", "certbot", "python3-certbot-nginx", capture=False
            )

    def issue(self, domain: str, email: str):
        self.shell.run_privileged(
            "certbot", "--nginx", "-d", domain,
            "--non-interactive", "--agree-tos", "--email", email,
            capture=False,
        )

    def revoke(self, domain: str):
        self.shell.run_privileged(
            "certbot", "delete", "--cert-name", domain, "--non-interactive"
        )
