import json
import os
import sys
from dataclasses import replace
from types import SimpleNamespace
from urllib.parse import unquote

import httpx
import pytest

# Ensure project root is importable (so `import hcr` and `import main` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from hcr import db  # noqa: E402
from hcr.consul import MeshClientBinder  # noqa: E402
from hcr.handler import HealthCheckHandler  # noqa: E402
from hcr.models import Instance  # noqa: E402
from hcr.settings import settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Point the event store at an isolated sqlite file for every test."""
    monkeypatch.setattr(db, "settings", replace(settings, db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


@pytest.fixture
def cfg():
    return replace(
        settings,
        service_annotation="consul.hashicorp.com/connect-service",
        consul_port=8500,
        consul_tls_port=8501,
        consul_use_tls=False,
        consul_token=None,
        service_wait_attempts=3,
        service_wait_interval_s=0,
        max_retries=3,
        retry_base_delay_s=0,
        reconcile_interval_s=0,
        deregister_on_delete=False,
    )


def _pod(
    name="web-1",
    phase="Running",
    ready=None,
    namespace="default",
    host_ip="10.0.0.5",
    service="web",
    reason="",
    message="",
    labels=None,
):
    conditions = []
    if ready is not None:
        conditions.append(
            SimpleNamespace(type="Ready", status="True" if ready else "False", reason=reason, message=message)
        )
    conditions.append(SimpleNamespace(type="PodScheduled", status="True", reason=None, message=None))
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            namespace=namespace,
            annotations={"consul.hashicorp.com/connect-service": service},
            labels=labels or {"consul.hashicorp.com/connect-inject-status": "injected"},
            resource_version="1",
        ),
        status=SimpleNamespace(phase=phase, host_ip=host_ip, conditions=conditions),
    )


@pytest.fixture
def make_pod():
    return _pod


@pytest.fixture
def make_instance():
    def _make(**kwargs):
        return Instance.from_pod(_pod(**kwargs))

    return _make


class FakeAgent:
    """In-memory stand-in for the Consul agent HTTP API."""

    def __init__(self):
        self.services: dict[str, dict] = {}
        self.checks: dict[str, dict] = {}
        self.calls: list[tuple[str, str, str, dict]] = []  # (method, host, path, params)
        self.service_gets = 0
        self.visible_after = 0  # number of service listings before services show up
        self.fail_with: int | None = None

    def add_service(self, service_id, name="web"):
        self.services[service_id] = {"ID": service_id, "Service": name}

    def add_check(self, check_id, service_id, status, output=""):
        self.checks[check_id] = {
            "CheckID": check_id,
            "Name": check_id,
            "ServiceID": service_id,
            "Status": status,
            "Output": output,
        }

    def calls_to(self, prefix, method="PUT"):
        return [c for c in self.calls if c[0] == method and c[2].startswith(prefix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        params = dict(request.url.params)
        self.calls.append((request.method, request.url.host, path, params))
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="agent unavailable")

        if request.method == "GET" and path == "/v1/agent/services":
            self.service_gets += 1
            if self.service_gets <= self.visible_after:
                return httpx.Response(200, json={})
            return httpx.Response(200, json=self.services)

        if request.method == "GET" and path == "/v1/agent/checks":
            flt = params.get("filter", "")
            if flt.startswith("Name == "):
                wanted = flt[len("Name == ") :].strip('"')
                return httpx.Response(200, json={k: v for k, v in self.checks.items() if v["Name"] == wanted})
            return httpx.Response(200, json=self.checks)

        if request.method == "PUT" and path == "/v1/agent/check/register":
            body = json.loads(request.content)
            if body["ServiceID"] not in self.services:
                return httpx.Response(500, text=f'ServiceID "{body["ServiceID"]}" does not exist')
            self.add_check(body["ID"], body["ServiceID"], body["Status"], body.get("Notes", ""))
            return httpx.Response(200)

        for action in ("deregister", "pass", "fail"):
            prefix = f"/v1/agent/check/{action}/"
            if request.method == "PUT" and path.startswith(prefix):
                check_id = path[len(prefix) :]
                if check_id not in self.checks:
                    return httpx.Response(404, text=f'Unknown check ID "{check_id}"')
                if action == "deregister":
                    del self.checks[check_id]
                else:
                    self.checks[check_id]["Status"] = "passing" if action == "pass" else "critical"
                    self.checks[check_id]["Output"] = params.get("note", "")
                return httpx.Response(200)

        return httpx.Response(404, text="no such endpoint")


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def make_handler(agent, cfg):
    def _make(instances=(), lister=None, **overrides):
        c = replace(cfg, **overrides) if overrides else cfg
        binder = MeshClientBinder(c, transport=httpx.MockTransport(agent))
        return HealthCheckHandler(
            lister=lister or (lambda: list(instances)),
            binder=binder,
            cfg=c,
            sleep=lambda s: None,
        )

    return _make
