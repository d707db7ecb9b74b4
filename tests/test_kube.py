from types import SimpleNamespace

import pytest
from kubernetes import config

from hcr import kube


class _Api:
    def __init__(self, pods):
        self.pods = pods
        self.calls = []

    def list_pod_for_all_namespaces(self, **kwargs):
        self.calls.append(("all", kwargs))
        return SimpleNamespace(items=self.pods)

    def list_namespaced_pod(self, **kwargs):
        self.calls.append(("namespaced", kwargs))
        return SimpleNamespace(items=self.pods)


def test_list_instances_converts_pods(make_pod):
    api = _Api([make_pod(name="a", ready=True), make_pod(name="b", ready=False, namespace="shop")])
    instances = kube.list_instances(api, "app=web")
    assert [(i.namespace, i.name, i.is_ready()) for i in instances] == [("default", "a", True), ("shop", "b", False)]
    assert api.calls == [("all", {"label_selector": "app=web"})]


def test_list_instances_in_one_namespace(make_pod):
    api = _Api([])
    assert kube.list_instances(api, "app=web", namespace="shop") == []
    assert api.calls == [("namespaced", {"namespace": "shop", "label_selector": "app=web"})]


def test_load_config_falls_back_to_kubeconfig(monkeypatch):
    loaded = []

    def no_cluster():
        raise config.ConfigException("not in a pod")

    monkeypatch.setattr(kube.config, "load_incluster_config", no_cluster)
    monkeypatch.setattr(kube.config, "load_kube_config", lambda: loaded.append("kubeconfig"))
    kube.load_config()
    assert loaded == ["kubeconfig"]


def test_load_config_without_any_config_raises(monkeypatch):
    def missing(*args, **kwargs):
        raise config.ConfigException("nothing configured")

    monkeypatch.setattr(kube.config, "load_incluster_config", missing)
    monkeypatch.setattr(kube.config, "load_kube_config", missing)
    with pytest.raises(config.ConfigException):
        kube.load_config()
