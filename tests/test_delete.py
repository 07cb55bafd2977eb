import pytest

from nodeship.deploy import DeployParams, delete_project, deploy_project
from nodeship.domains import setup_domain
from nodeship.utils import DeployError


@pytest.fixture
def with_domain(configured):
    ctx = configured
    project = deploy_project(ctx, DeployParams(owner="acme", repo="site", port=3000))
    setup_domain(ctx, "site.example.com", 3000, project["pid"])
    return ctx, project


def test_delete_removes_everything(with_domain, github):
    ctx, project = with_domain

    problems = delete_project(ctx, "site")

    assert problems == []
    config = ctx.store.load()
    assert config["projects"] == []
    assert config["domains"] == []
    assert "site" not in ctx.supervisor.processes
    assert not ctx.paths.project_dir("site").exists()
    assert not ctx.proxy.site_exists("site.example.com")
    assert ctx.shell.ran("certbot", "delete", "--cert-name", "site.example.com")
    assert github.deleted == [("acme/site", project["webhookId"])]


def test_delete_continues_past_failures(with_domain, github):
    ctx, project = with_domain
    del ctx.supervisor.processes["site"]
    github.fail = True
    ctx.shell.fail("certbot", "delete")

    problems = delete_project(ctx, "site")

    assert len(problems) == 3
    config = ctx.store.load()
    assert config["projects"] == []
    assert config["domains"] == []
    assert not ctx.paths.project_dir("site").exists()
    assert not ctx.proxy.site_exists("site.example.com")


def test_delete_unknown_project(configured):
    with pytest.raises(DeployError):
        delete_project(configured, "missing")
