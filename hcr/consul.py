from __future__ import annotations

import ssl
from typing import Any

import httpx

from .models import HealthCheckRecord, Instance
from .settings import Settings, settings as default_settings


class MeshAgentError(Exception):
    """A Consul agent call failed or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ServiceNotFound(MeshAgentError):
    pass


def agent_address(host_ip: str, port: int, tls_port: int = 8501, use_tls: bool = False) -> str:
    """Base URL of the agent on a given host; the TLS port implies https."""
    scheme = "https" if use_tls or int(port) == int(tls_port) else "http"
    host = host_ip
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"  # IPv6 literal
    return f"{scheme}://{host}:{int(port)}"


class AgentClient:
    """Thin client for the parts of the Consul agent HTTP API we use.

    Bound to a single agent address for its whole life; build a new one for
    another host instead of re-pointing this one.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        verify: bool | ssl.SSLContext = True,
        timeout_s: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url
        headers = {"X-Consul-Token": token} if token else {}
        self._http = httpx.Client(
            base_url=base_url,
            headers=headers,
            verify=verify,
            timeout=timeout_s,
            follow_redirects=False,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "AgentClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise MeshAgentError(f"{method} {self.base_url}{path}: {type(e).__name__}: {e}") from e
        if resp.status_code >= 300:
            raise MeshAgentError(
                f"{method} {self.base_url}{path}: HTTP {resp.status_code}: {resp.text.strip()}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    def _json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise MeshAgentError(f"Invalid JSON from {self.base_url}: {e}") from e

    def services(self) -> dict[str, dict[str, Any]]:
        data = self._json(self._request("GET", "/v1/agent/services"))
        return data if isinstance(data, dict) else {}

    def has_service(self, service_id: str) -> bool:
        for sid, svc in self.services().items():
            if sid == service_id or (isinstance(svc, dict) and svc.get("ID") == service_id):
                return True
        return False

    def checks(self, name: str | None = None) -> dict[str, HealthCheckRecord]:
        params = {"filter": f'Name == "{name}"'} if name else None
        data = self._json(self._request("GET", "/v1/agent/checks", params=params))
        if not isinstance(data, dict):
            return {}
        return {cid: HealthCheckRecord.from_agent(cid, c) for cid, c in data.items() if isinstance(c, dict)}

    def register_ttl_check(
        self,
        check_id: str,
        service_id: str,
        status: str,
        reason: str = "",
        ttl: str = "100000h",
    ) -> None:
        payload = {
            "ID": check_id,
            "Name": check_id,
            "Notes": reason,
            "ServiceID": service_id,
            "TTL": ttl,
            "Status": status,
            "SuccessBeforePassing": 1,
            "FailuresBeforeCritical": 1,
        }
        self._request("PUT", "/v1/agent/check/register", json=payload)

    def deregister_check(self, check_id: str) -> bool:
        """Deregister a check. Returns False if the agent did not know it."""
        try:
            self._request("PUT", f"/v1/agent/check/deregister/{check_id}")
        except MeshAgentError as e:
            if e.status_code == 404 or "unknown check" in e.body.lower():
                return False
            raise
        return True

    def pass_ttl(self, check_id: str, note: str = "") -> None:
        self._request("PUT", f"/v1/agent/check/pass/{check_id}", params={"note": note})

    def fail_ttl(self, check_id: str, note: str = "") -> None:
        self._request("PUT", f"/v1/agent/check/fail/{check_id}", params={"note": note})

    def set_ttl_status(self, check_id: str, reason: str, fail: bool) -> None:
        if fail:
            self.fail_ttl(check_id, reason)
        else:
            self.pass_ttl(check_id, reason)


class MeshClientBinder:
    """Builds an AgentClient pointed at the agent on an instance's host."""

    def __init__(self, cfg: Settings | None = None, transport: httpx.BaseTransport | None = None):
        self.cfg = cfg or default_settings
        self.transport = transport

    def _verify(self) -> bool | ssl.SSLContext:
        if self.cfg.consul_tls_skip_verify:
            return False
        if self.cfg.consul_ca_file:
            return ssl.create_default_context(cafile=self.cfg.consul_ca_file)
        return True

    def bind(self, instance: Instance) -> AgentClient:
        if not instance.host_ip:
            raise MeshAgentError(f"pod {instance.key} has no host IP")
        base = agent_address(
            instance.host_ip,
            self.cfg.consul_port,
            tls_port=self.cfg.consul_tls_port,
            use_tls=self.cfg.consul_use_tls,
        )
        return AgentClient(
            base,
            token=self.cfg.consul_token,
            verify=self._verify(),
            timeout_s=self.cfg.agent_timeout_s,
            transport=self.transport,
        )
