"""In-memory ClusterClient used by the tests."""
import sys
from pathlib import Path

from kubernetes.client.models import V1Pod, V1PodCondition, V1PodStatus

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from spire_operator.exceptions import ObjectNotFound  # noqa: E402


def make_pod(*true_conditions, false_conditions=()):
    conditions = [V1PodCondition(type=c, status="True") for c in true_conditions]
    conditions += [V1PodCondition(type=c, status="False") for c in false_conditions]
    return V1Pod(status=V1PodStatus(conditions=conditions))


class FakeCluster:
    def __init__(self, pods=None, fail_on=None):
        self.objects = {}
        self.created = []
        self.deleted = []
        self.status_writes = []
        self.pods = list(pods or [])
        self.fail_on = set(fail_on or [])
        self.fail_list_pods = False
        self.fail_patch_status = False

    def add(self, kind, namespace, name, spec):
        self.objects[(kind, namespace, name)] = {
            "kind": kind,
            "metadata": {"name": name, "namespace": namespace},
            "spec": spec,
        }

    def get_object(self, kind, namespace, name):
        try:
            return self.objects[(kind, namespace, name)]
        except KeyError:
            raise ObjectNotFound(kind, namespace, name)

    def list_objects(self, kind, namespace):
        return [obj for (k, ns, _), obj in sorted(self.objects.items()) if k == kind and ns == namespace]

    def delete_object(self, kind, namespace, name):
        if self.objects.pop((kind, namespace, name), None) is None:
            raise ObjectNotFound(kind, namespace, name)
        self.deleted.append((kind, namespace, name))

    def create(self, descriptor):
        self.created.append(descriptor.name)
        if descriptor.name in self.fail_on:
            raise RuntimeError(f"create {descriptor.name} refused")

    def list_pods(self, namespace, label_selector):
        if self.fail_list_pods:
            raise RuntimeError("apiserver unavailable")
        return list(self.pods)

    def patch_status(self, kind, namespace, name, status):
        if self.fail_patch_status:
            raise RuntimeError("status write refused")
        self.status_writes.append((kind, namespace, name, dict(status)))

    def health_values(self):
        return [status["health"] for _, _, _, status in self.status_writes]
