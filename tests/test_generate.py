import copy
from unittest import mock

import pytest

import fdeploy.generate
import fdeploy.manifest_utilities as mu
from fdeploy.errors import ClientRequestError
from fdeploy.models import K8sSecret

from .test_helpers import load_deployment, make_request, make_secret


class TestLabels:
    def test_unique_id(self):
        uid = fdeploy.generate.unique_id()
        assert uid.isdigit()
        assert 0 <= int(uid) < 1_000_000_000

    @mock.patch.object(fdeploy.generate, "unique_id")
    def test_function_labels(self, m_uid):
        m_uid.return_value = "42"

        # Default labels only.
        req = make_request(labels=None)
        assert fdeploy.generate.function_labels(req) == {
            "faas_function": "figlet",
            "uid": "42",
        }

        # Caller labels are added.
        req = make_request(labels={"team": "blue"})
        assert fdeploy.generate.function_labels(req) == {
            "faas_function": "figlet",
            "uid": "42",
            "team": "blue",
        }

        # Caller labels win on collisions, even for our own labels.
        req = make_request(labels={"uid": "fixed", "faas_function": "other"})
        assert fdeploy.generate.function_labels(req) == {
            "faas_function": "other",
            "uid": "fixed",
        }


class TestUpdateDeploymentManifest:
    def update(self, req, base, secrets=None):
        resources = mu.create_resources(req)
        return fdeploy.generate.update_deployment_manifest(
            req, base, resources, secrets or {}
        )

    @mock.patch.object(fdeploy.generate, "unique_id")
    def test_basic(self, m_uid):
        m_uid.return_value = "42"
        base = load_deployment("figlet")
        base_copy = copy.deepcopy(base)

        req = make_request()
        out = self.update(req, base)

        # Must not have modified the input manifest.
        assert base == base_copy

        container = out["spec"]["template"]["spec"]["containers"][0]
        pod_spec = out["spec"]["template"]["spec"]
        assert container["image"] == "functions/figlet:0.2"
        assert container["env"] == [
            {"name": "content_type", "value": "text/plain"},
            {"name": "fprocess", "value": "figlet -f slant"},
            {"name": "write_debug", "value": "true"},
        ]
        assert pod_spec["nodeSelector"] == {
            "node.kubernetes.io/instance-type": "m5.large"
        }
        assert container["resources"] == {
            "limits": {"cpu": "500m", "memory": "128Mi"},
            "requests": {"memory": "64Mi"},
        }

        labels = {"faas_function": "figlet", "uid": "42", "team": "blue"}
        assert out["metadata"]["labels"] == labels
        assert out["spec"]["template"]["metadata"]["labels"] == labels

        # Replicas are unaffected unless there is a minimum replica label.
        assert out["spec"]["replicas"] == 1

        # Everything else must have survived, most notably the resource
        # version that K8s needs to detect concurrent writes.
        assert out["metadata"]["resourceVersion"] == "1"
        assert out["metadata"]["annotations"] == base["metadata"]["annotations"]
        assert out["spec"]["selector"] == base["spec"]["selector"]
        assert out["spec"]["strategy"] == base["spec"]["strategy"]
        assert container["ports"] == [{"containerPort": 8080, "protocol": "TCP"}]
        assert container["readinessProbe"] == base_copy["spec"]["template"]["spec"][
            "containers"
        ][0]["readinessProbe"]
        assert container["imagePullPolicy"] == "Always"

    def test_replace_previous_values(self):
        """Env, node selector and resources are replaced, not merged."""
        base = load_deployment("figlet")
        base["spec"]["template"]["spec"]["nodeSelector"] = {"zone": "eu"}
        base["spec"]["template"]["spec"]["containers"][0]["resources"] = {
            "limits": {"memory": "1Gi"}
        }
        base["metadata"]["labels"]["stale"] = "yes"

        req = make_request(
            envProcess="", envVars={}, constraints=[], limits=None, requests=None
        )
        out = self.update(req, base)

        pod_spec = out["spec"]["template"]["spec"]
        assert "nodeSelector" not in pod_spec
        assert pod_spec["containers"][0]["env"] == []
        assert pod_spec["containers"][0]["resources"] == {}
        assert "stale" not in out["metadata"]["labels"]

    def test_min_replica_label(self):
        base = load_deployment("figlet")
        base["spec"]["replicas"] = 3

        req = make_request(labels={"com.openfaas.scale.min": "5"})
        out = self.update(req, base)
        assert out["spec"]["replicas"] == 5
        assert out["metadata"]["labels"]["com.openfaas.scale.min"] == "5"

        # Invalid hints are ignored.
        req = make_request(labels={"com.openfaas.scale.min": "many"})
        assert self.update(req, base)["spec"]["replicas"] == 3

    def test_secrets(self):
        base = load_deployment("figlet")
        secrets = {"db": K8sSecret.model_validate(make_secret("db"))}

        out = self.update(make_request(secrets=["db"]), base, secrets)
        pod_spec = out["spec"]["template"]["spec"]
        assert pod_spec["volumes"][0]["name"] == "figlet-projected-secrets"
        assert "volumes" not in base["spec"]["template"]["spec"]

        # Unresolved secrets abort the update without touching the input.
        base_copy = copy.deepcopy(base)
        with pytest.raises(ClientRequestError):
            self.update(make_request(secrets=["missing"]), base, {})
        assert base == base_copy

    def test_only_first_container(self):
        base = load_deployment("figlet")
        sidecar = {"name": "sidecar", "image": "envoy:1.0"}
        base["spec"]["template"]["spec"]["containers"].append(sidecar)

        out = self.update(make_request(), base)
        assert out["spec"]["template"]["spec"]["containers"][1] == sidecar

        # Secrets are only mounted into the function container.
        secrets = {"db": K8sSecret.model_validate(make_secret("db"))}
        out = self.update(make_request(secrets=["db"]), base, secrets)
        containers = out["spec"]["template"]["spec"]["containers"]
        assert len(containers[0]["volumeMounts"]) == 1
        assert containers[1] == sidecar

    def test_no_containers(self):
        base = load_deployment("figlet")
        base["spec"]["template"]["spec"]["containers"] = []

        out = self.update(make_request(), base)
        assert out == base
        assert out is not base


class TestScaleManifest:
    def test_scale_manifest(self):
        base = load_deployment("figlet")
        base_copy = copy.deepcopy(base)

        for replicas in (0, 1, 7):
            out = fdeploy.generate.scale_manifest(base, replicas)
            assert out["spec"]["replicas"] == replicas

            # Nothing else must change.
            out["spec"]["replicas"] = base["spec"]["replicas"]
            assert out == base
        assert base == base_copy

    def test_has_containers(self):
        assert fdeploy.generate.has_containers(load_deployment("figlet"))
        assert not fdeploy.generate.has_containers({})
        assert not fdeploy.generate.has_containers(
            {"spec": {"template": {"spec": {"containers": []}}}}
        )
