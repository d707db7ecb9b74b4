from __future__ import annotations

from typing import Any

from kubernetes import client, config

from . import db
from .models import Instance


def load_config() -> None:
    """In-cluster config when running in a pod, kubeconfig otherwise."""
    try:
        config.load_incluster_config()
        db.log_event("INFO", "Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        db.log_event("INFO", "Loaded kubeconfig")


def core_api() -> client.CoreV1Api:
    load_config()
    return client.CoreV1Api()


def list_pods(api: Any, label_selector: str, namespace: str = "", **kwargs: Any) -> Any:
    """List pods in one namespace, or in all of them when namespace is empty."""
    if namespace:
        return api.list_namespaced_pod(namespace=namespace, label_selector=label_selector, **kwargs)
    return api.list_pod_for_all_namespaces(label_selector=label_selector, **kwargs)


def list_instances(api: Any, label_selector: str, namespace: str = "") -> list[Instance]:
    pods = list_pods(api, label_selector, namespace)
    return [Instance.from_pod(p) for p in (getattr(pods, "items", None) or [])]
