"""Tests for rendered manifests and policies."""

from iotdeploy.constants import (
    DEFAULT_EXTERNAL_SECRETS_VERSION,
    EXTERNAL_SECRETS_API_VERSION,
    SECRET_STORE_NAME,
)
from iotdeploy.core import manifests
from iotdeploy.core.config_loader import build_config
from iotdeploy.services.kubectl_service import manifest_checksum

from tests.conftest import BASE_VALUES


class TestTrustPolicy:
    def test_scoped_to_service_account(self):
        issuer = "oidc.eks.us-east-1.amazonaws.com/id/ABC"
        policy = manifests.trust_policy("123456789012", issuer, "kube-system", "ebs-csi-controller-sa")

        statement = policy["Statement"][0]
        assert statement["Principal"]["Federated"] == f"arn:aws:iam::123456789012:oidc-provider/{issuer}"
        assert statement["Action"] == "sts:AssumeRoleWithWebIdentity"
        conditions = statement["Condition"]["StringEquals"]
        assert conditions[f"{issuer}:sub"] == "system:serviceaccount:kube-system:ebs-csi-controller-sa"
        assert conditions[f"{issuer}:aud"] == "sts.amazonaws.com"


class TestClusterManifests:
    def test_storage_classes(self):
        gp3, gp2 = manifests.storage_classes()
        assert gp3["metadata"]["name"] == "gp3"
        assert gp3["metadata"]["annotations"]["storageclass.kubernetes.io/is-default-class"] == "true"
        assert gp3["parameters"]["type"] == "gp3"
        assert "annotations" not in gp2["metadata"]
        assert gp2["volumeBindingMode"] == "WaitForFirstConsumer"

    def test_secret_store_has_no_static_credentials(self):
        store = manifests.secret_store("acme-dev", "us-east-1")
        assert store["metadata"] == {
            "name": SECRET_STORE_NAME,
            "namespace": "acme-dev",
            "labels": {"app.kubernetes.io/managed-by": "iotdeploy"},
        }
        assert store["spec"]["provider"]["aws"] == {"service": "ParameterStore", "region": "us-east-1"}

    def test_external_secret_maps_catalog(self):
        request = manifests.external_secret("acme", "acme-dev")
        keys = {item["secretKey"]: item["remoteRef"]["key"] for item in request["spec"]["data"]}
        assert request["spec"]["target"]["name"] == "acme-credentials"
        assert keys["POSTGRES_PASSWORD"] == "/acme/timescaledb/password"
        assert keys["GRAFANA_ADMIN_USER"] == "/acme/grafana/admin-user"

    def test_secret_resources_use_served_api(self):
        store = manifests.secret_store("acme-dev", "us-east-1")
        request = manifests.external_secret("acme", "acme-dev")
        assert store["apiVersion"] == request["apiVersion"] == "external-secrets.io/v1"
        assert EXTERNAL_SECRETS_API_VERSION == "external-secrets.io/v1"
        # v1 is served from chart 0.17 onwards
        major, minor = (int(part) for part in DEFAULT_EXTERNAL_SECRETS_VERSION.split(".")[:2])
        assert (major, minor) >= (0, 17)

    def test_application_set(self):
        config = build_config(dict(BASE_VALUES, ENVIRONMENTS="dev,prod"))
        appset = manifests.application_set(
            "acme", "argocd", config.environments, config.gitops_repo_url, "HEAD", "iot-stack-chart"
        )

        elements = appset["spec"]["generators"][0]["list"]["elements"]
        assert [e["namespace"] for e in elements] == ["acme-dev", "acme-prod"]
        assert [e["external"] for e in elements] == ["false", "true"]
        template = appset["spec"]["template"]
        assert template["metadata"]["name"] == "acme-{{.name}}"
        assert template["spec"]["source"]["repoURL"] == "https://github.com/acme/iot-gitops.git"
        assert template["spec"]["destination"]["namespace"] == "{{.namespace}}"

    def test_application_name(self):
        env = build_config(BASE_VALUES).environments[0]
        assert manifests.application_name("acme", env) == "acme-dev"


class TestChecksum:
    def test_ignores_own_annotation(self):
        store = manifests.secret_store("acme-dev", "us-east-1")
        before = manifest_checksum(store)
        store["metadata"]["annotations"] = {"iotdeploy.io/checksum": before}
        assert manifest_checksum(store) == before

    def test_changes_with_content(self):
        assert manifest_checksum(manifests.secret_store("acme-dev", "us-east-1")) != manifest_checksum(
            manifests.secret_store("acme-dev", "eu-west-1")
        )
