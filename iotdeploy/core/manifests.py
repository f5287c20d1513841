"""
Manifest rendering.

Jinja2 templates under ``iotdeploy/templates`` rendered into Python objects
(via PyYAML / json) ready for the cluster control API or IAM.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List

import yaml
from jinja2 import Environment as JinjaEnvironment, FileSystemLoader, StrictUndefined

from iotdeploy.constants import (
    EXTERNAL_SECRETS_API_VERSION,
    EXTERNAL_SECRETS_REFRESH_INTERVAL,
    OIDC_AUDIENCE,
    SECRET_CATALOG,
    SECRET_STORE_NAME,
    STORAGE_CLASS_PROVISIONER,
)
from iotdeploy.models.context import Environment

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

_jinja = JinjaEnvironment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def render_text(template_name: str, **variables) -> str:
    return _jinja.get_template(template_name).render(**variables)


def render_yaml(template_name: str, **variables) -> Dict[str, Any]:
    return yaml.safe_load(render_text(template_name, **variables))


def trust_policy(
    account_id: str, oidc_issuer: str, namespace: str, service_account: str
) -> Dict[str, Any]:
    """Web-identity trust policy for one service account."""
    return json.loads(
        render_text(
            "trust-policy.json.j2",
            account_id=account_id,
            oidc_issuer=oidc_issuer,
            namespace=namespace,
            service_account=service_account,
            audience=OIDC_AUDIENCE,
        )
    )


def storage_classes() -> List[Dict[str, Any]]:
    """gp3 as the default class, gp2 kept for charts that ask for it."""
    return [
        render_yaml(
            "storage-class.yaml.j2",
            name="gp3",
            volume_type="gp3",
            default=True,
            provisioner=STORAGE_CLASS_PROVISIONER,
        ),
        render_yaml(
            "storage-class.yaml.j2",
            name="gp2",
            volume_type="gp2",
            default=False,
            provisioner=STORAGE_CLASS_PROVISIONER,
        ),
    ]


def namespace(project: str, environment: Environment) -> Dict[str, Any]:
    return render_yaml("namespace.yaml.j2", project=project, environment=environment)


def secret_store(namespace_name: str, region: str) -> Dict[str, Any]:
    return render_yaml(
        "secret-store.yaml.j2",
        api_version=EXTERNAL_SECRETS_API_VERSION,
        store_name=SECRET_STORE_NAME,
        namespace=namespace_name,
        region=region,
    )


def credentials_secret_name(project: str) -> str:
    return f"{project}-credentials"


def external_secret(project: str, namespace_name: str) -> Dict[str, Any]:
    """Secret request mapping every catalogued parameter into one secret."""
    items = [
        {"secret_key": config_key, "path": f"/{project}/{component}/{param_key}"}
        for component, keys in SECRET_CATALOG.items()
        for param_key, config_key in keys.items()
    ]
    return render_yaml(
        "external-secret.yaml.j2",
        api_version=EXTERNAL_SECRETS_API_VERSION,
        secret_name=credentials_secret_name(project),
        namespace=namespace_name,
        store_name=SECRET_STORE_NAME,
        refresh_interval=EXTERNAL_SECRETS_REFRESH_INTERVAL,
        items=items,
    )


def application_set(
    project: str,
    argocd_namespace: str,
    environments: Iterable[Environment],
    repo_url: str,
    revision: str,
    chart_path: str,
) -> Dict[str, Any]:
    """One Application per environment, generated from a list."""
    return render_yaml(
        "applicationset.yaml.j2",
        project=project,
        argocd_namespace=argocd_namespace,
        environments=list(environments),
        repo_url=repo_url,
        revision=revision,
        chart_path=chart_path,
        secret_name=credentials_secret_name(project),
    )


def application_name(project: str, environment: Environment) -> str:
    return f"{project}-{environment.name}"
