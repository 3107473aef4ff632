"""Static catalog of the report kinds served by the Trivy operator.

Discovery (``trivyui.registry``) is authoritative for what a cluster actually
serves.  This table covers the kinds shipped by released operator versions and
lets the read path tell a kind that is merely not installed in one cluster
apart from a name that is not a report kind at all.
"""

from __future__ import annotations

from trivyui.models.reports import ReportKind

TRIVY_GROUP = "aquasecurity.github.io"
DEFAULT_API_VERSION = "v1alpha1"

_DEFAULT_GV = f"{TRIVY_GROUP}/{DEFAULT_API_VERSION}"


def _kind(name: str, short_name: str, kind: str, *, namespaced: bool) -> ReportKind:
    return ReportKind(
        name=name,
        short_name=short_name,
        api_version=_DEFAULT_GV,
        namespaced=namespaced,
        kind=kind,
    )


# Cluster-scoped reports
CLUSTER_COMPLIANCE = _kind("clustercompliancereports", "compliance", "ClusterComplianceReport", namespaced=False)
CLUSTER_CONFIG_AUDIT = _kind(
    "clusterconfigauditreports", "clusterconfigaudit", "ClusterConfigAuditReport", namespaced=False
)
CLUSTER_INFRA_ASSESSMENT = _kind(
    "clusterinfraassessmentreports", "clusterinfraassessment", "ClusterInfraAssessmentReport", namespaced=False
)
CLUSTER_RBAC_ASSESSMENT = _kind(
    "clusterrbacassessmentreports", "clusterrbacassessmentreport", "ClusterRbacAssessmentReport", namespaced=False
)
CLUSTER_SBOM = _kind("clustersbomreports", "clustersbom", "ClusterSbomReport", namespaced=False)
CLUSTER_VULNERABILITY = _kind(
    "clustervulnerabilityreports", "clustervuln", "ClusterVulnerabilityReport", namespaced=False
)

# Namespaced reports
CONFIG_AUDIT = _kind("configauditreports", "configaudit", "ConfigAuditReport", namespaced=True)
EXPOSED_SECRET = _kind("exposedsecretreports", "exposedsecret", "ExposedSecretReport", namespaced=True)
INFRA_ASSESSMENT = _kind("infraassessmentreports", "infraassessment", "InfraAssessmentReport", namespaced=True)
RBAC_ASSESSMENT = _kind("rbacassessmentreports", "rbacassessment", "RbacAssessmentReport", namespaced=True)
SBOM = _kind("sbomreports", "sbom", "SbomReport", namespaced=True)
VULNERABILITY = _kind("vulnerabilityreports", "vuln", "VulnerabilityReport", namespaced=True)

KNOWN_REPORT_KINDS: tuple[ReportKind, ...] = (
    CLUSTER_COMPLIANCE,
    CLUSTER_CONFIG_AUDIT,
    CLUSTER_INFRA_ASSESSMENT,
    CLUSTER_RBAC_ASSESSMENT,
    CLUSTER_SBOM,
    CLUSTER_VULNERABILITY,
    CONFIG_AUDIT,
    EXPOSED_SECRET,
    INFRA_ASSESSMENT,
    RBAC_ASSESSMENT,
    SBOM,
    VULNERABILITY,
)

_BY_NAME: dict[str, ReportKind] = {k.name: k for k in KNOWN_REPORT_KINDS}


def known_kind(name: str) -> ReportKind | None:
    """Return the catalog entry for a plural resource name, or None."""
    return _BY_NAME.get(name)
