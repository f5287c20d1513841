"""
iotdeploy Constants

Centralized constants for magic values, defaults, and configuration.
"""

# Configuration keys
REQUIRED_INFRA_KEYS = ["PROJECT_NAME", "AWS_REGION", "CLUSTER_NAME"]
REQUIRED_PROVISION_KEYS = REQUIRED_INFRA_KEYS + [
    "NAMESPACE_PREFIX",
    "POSTGRES_DB",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "GRAFANA_ADMIN_USER",
    "GRAFANA_ADMIN_PASSWORD",
    "ARGOCD_VERSION",
    "ARGOCD_NAMESPACE",
    "GITOPS_REPO_URL",
]

DEFAULT_ENV_FILE = ".env"
DEFAULT_ENVIRONMENTS = "dev"
DEFAULT_GITOPS_REVISION = "HEAD"
DEFAULT_GITOPS_CHART_PATH = "iot-stack-chart"
DEFAULT_TERRAFORM_DIR = "terraform-eks"
DEFAULT_LOG_DIR = "logs"
DEFAULT_NODE_MIN_SIZE = 1
DEFAULT_NODE_DESIRED_SIZE = 2
DEFAULT_NODE_MAX_SIZE = 3
DEFAULT_NODE_INSTANCE_TYPE = "t3.medium"
# Chart release serving the external-secrets.io/v1 API used by the templates
DEFAULT_EXTERNAL_SECRETS_VERSION = "0.17.0"

# Environment name -> (size profile, externally reachable)
ENVIRONMENT_PROFILES = {
    "dev": ("small", False),
    "staging": ("medium", False),
    "prod": ("large", True),
}

# Tools that must be on PATH
REQUIRED_TOOLS = ["terraform", "kubectl", "helm", "aws"]

# Terraform
TERRAFORM_CLUSTER_OUTPUT = "cluster_name"
TERRAFORM_VPC_OUTPUT = "vpc_id"
TERRAFORM_DESTROY_TIMEOUT = 1800
TERRAFORM_APPLY_TIMEOUT = 2400

# Identity federation
OIDC_THUMBPRINT = "9e99a48a9960b14926bb7f3b02e22da2b0ab7280"
OIDC_AUDIENCE = "sts.amazonaws.com"
EBS_CSI_ROLE_NAME = "AmazonEKS_EBS_CSI_DriverRole"
EBS_CSI_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonEBSCSIDriverPolicy"
EBS_CSI_NAMESPACE = "kube-system"
EBS_CSI_SERVICE_ACCOUNT = "ebs-csi-controller-sa"
SECRETS_ROLE_SUFFIX = "external-secrets-role"
SECRETS_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonSSMReadOnlyAccess"

# EKS addon
EBS_CSI_ADDON_NAME = "aws-ebs-csi-driver"

# External Secrets Operator
EXTERNAL_SECRETS_REPO_NAME = "external-secrets"
EXTERNAL_SECRETS_REPO_URL = "https://charts.external-secrets.io"
EXTERNAL_SECRETS_CHART = "external-secrets/external-secrets"
EXTERNAL_SECRETS_RELEASE = "external-secrets"
EXTERNAL_SECRETS_NAMESPACE = "external-secrets"
EXTERNAL_SECRETS_SERVICE_ACCOUNT = "external-secrets"
EXTERNAL_SECRETS_REFRESH_INTERVAL = "1h"
EXTERNAL_SECRETS_API_VERSION = "external-secrets.io/v1"
SECRET_STORE_NAME = "aws-parameter-store"
IRSA_ANNOTATION = "eks.amazonaws.com/role-arn"

# Secret catalog: component -> {parameter key: config key}
SECRET_CATALOG = {
    "timescaledb": {
        "db": "POSTGRES_DB",
        "user": "POSTGRES_USER",
        "password": "POSTGRES_PASSWORD",
    },
    "grafana": {
        "admin-user": "GRAFANA_ADMIN_USER",
        "admin-password": "GRAFANA_ADMIN_PASSWORD",
    },
}

# GitOps controller
ARGOCD_INSTALL_URL = (
    "https://raw.githubusercontent.com/argoproj/argo-cd/{version}/manifests/install.yaml"
)
ARGOCD_SERVER_DEPLOYMENT = "argocd-server"
ARGOCD_SERVER_TIMEOUT = 300
ARGOCD_VERSION_ANNOTATION = "iotdeploy.io/argocd-version"

# Manifest bookkeeping
CHECKSUM_ANNOTATION = "iotdeploy.io/checksum"

# Storage classes
STORAGE_CLASS_PROVISIONER = "ebs.csi.aws.com"

# Teardown
WORKLOAD_DELETE_TIMEOUT = "60s"
ENI_DETACH_SETTLE_SECONDS = 5
VOLUME_CLUSTER_TAG_KEYS = ["kubernetes.io/cluster/{cluster}", "KubernetesCluster"]
CLUSTER_ENI_DESCRIPTION = "Amazon EKS {cluster}"
CLUSTER_SG_NAME_PATTERN = "eks-cluster-sg-{cluster}-*"

# Log Configuration
LOG_DATE_FORMAT = "%Y-%m-%d"
