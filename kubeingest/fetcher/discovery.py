"""Kind discovery: which custom resource kinds to list from a cluster.

Crossplane kinds come from CompositeResourceDefinitions (composites and
claims) and, optionally, CRDs in the ``managed`` category. KRO kinds come
from active ResourceGraphDefinitions. Configured selectors are merged in and
duplicates collapsed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from kubeingest.errors import ConfigError, FetchError
from kubeingest.fetcher.resource_fetcher import ResourceFetcher
from kubeingest.models.config import IngestionConfig, KindSelectorDefinition
from kubeingest.models.entities import CycleError
from kubeingest.models.resources import ClusterRef, KindSelector, RawResource

_log = structlog.get_logger(component="fetcher.discovery")

CROSSPLANE_GROUP = "apiextensions.crossplane.io"
KRO_GROUP = "kro.run"

COMPOSITION_SELECTOR = KindSelector(CROSSPLANE_GROUP, "v1", "Composition", namespaced=False)
XRD_SELECTOR = KindSelector(CROSSPLANE_GROUP, "v1", "CompositeResourceDefinition", namespaced=False)
CRD_SELECTOR = KindSelector("apiextensions.k8s.io", "v1", "CustomResourceDefinition", namespaced=False)
RGD_SELECTOR = KindSelector(KRO_GROUP, "v1alpha1", "ResourceGraphDefinition", namespaced=False)


@dataclass
class DiscoveryOutcome:
    """Selectors to fetch this tick.

    ``incomplete`` is set when a discovery listing (XRDs, CRDs, RGDs) failed,
    so kinds it would have contributed may be missing from ``selectors``.
    Invalid configured selectors are recorded in ``errors`` only.
    """

    selectors: list[KindSelector] = field(default_factory=list)
    errors: list[CycleError] = field(default_factory=list)
    incomplete: bool = False


def build_selector(definition: KindSelectorDefinition) -> KindSelector:
    """Validate a configured selector.

    Raises:
        ConfigError: group, version or kind is empty. Core-group kinds are
            not custom resources and cannot be listed.
    """
    subject = f"{definition.api_group}/{definition.api_version}/{definition.kind}"
    if not definition.api_group:
        raise ConfigError("kind selector has no apiGroup (core kinds are not supported)", subject=subject)
    if not definition.api_version or not definition.kind:
        raise ConfigError("kind selector needs apiVersion and kind", subject=subject)
    return KindSelector(
        api_group=definition.api_group,
        api_version=definition.api_version,
        kind=definition.kind,
        plural=definition.plural,
        namespace=definition.namespace,
        namespaced=definition.namespaced,
    )


def merge_selectors(*groups: list[KindSelector]) -> list[KindSelector]:
    """Concatenate selector lists, keeping the first selector for each key."""
    seen: set[tuple[str, str, str, str]] = set()
    merged: list[KindSelector] = []
    for group in groups:
        for selector in group:
            if selector.key in seen:
                continue
            seen.add(selector.key)
            merged.append(selector)
    return merged


def _served_versions(spec_versions: Any) -> list[str]:
    versions: list[str] = []
    for version in spec_versions or []:
        if isinstance(version, dict) and version.get("name") and version.get("served", True):
            versions.append(str(version["name"]))
    return versions


def selectors_from_xrds(xrds: list[RawResource]) -> list[KindSelector]:
    """Composite and claim selectors for every served XRD version.

    Composites are namespaced only when the XRD says ``scope: Namespaced``
    (Crossplane v2); claims are always namespaced.
    """
    selectors: list[KindSelector] = []
    for xrd in xrds:
        group = xrd.spec_field("group")
        names = xrd.spec_field("names") or {}
        kind = names.get("kind") if isinstance(names, dict) else None
        if not group or not kind:
            _log.debug("xrd_skipped", xrd=xrd.name, reason="missing group or names.kind")
            continue
        namespaced = xrd.spec_field("scope") == "Namespaced"
        claim_names = xrd.spec_field("claimNames")
        for version in _served_versions(xrd.spec_field("versions")):
            selectors.append(
                KindSelector(group, version, kind, plural=str(names.get("plural") or ""), namespaced=namespaced)
            )
            if isinstance(claim_names, dict) and claim_names.get("kind"):
                selectors.append(
                    KindSelector(
                        group,
                        version,
                        str(claim_names["kind"]),
                        plural=str(claim_names.get("plural") or ""),
                        namespaced=True,
                    )
                )
    return selectors


def selectors_from_managed_crds(crds: list[RawResource]) -> list[KindSelector]:
    """Selectors for CRDs carrying the ``managed`` category (Crossplane providers)."""
    selectors: list[KindSelector] = []
    for crd in crds:
        names = crd.spec_field("names") or {}
        if not isinstance(names, dict) or "managed" not in (names.get("categories") or []):
            continue
        group = crd.spec_field("group")
        if not group or not names.get("kind"):
            continue
        namespaced = crd.spec_field("scope") == "Namespaced"
        for version in _served_versions(crd.spec_field("versions")):
            selectors.append(
                KindSelector(
                    group, version, str(names["kind"]), plural=str(names.get("plural") or ""), namespaced=namespaced
                )
            )
    return selectors


def selectors_from_rgds(rgds: list[RawResource]) -> list[KindSelector]:
    """Instance selectors for every active ResourceGraphDefinition."""
    selectors: list[KindSelector] = []
    for rgd in rgds:
        state = rgd.status.get("state") if isinstance(rgd.status, dict) else None
        if state != "Active":
            _log.debug("rgd_inactive", rgd=rgd.name, state=state)
            continue
        schema = rgd.spec_field("schema") or {}
        kind = schema.get("kind") if isinstance(schema, dict) else None
        if not kind:
            continue
        selectors.append(
            KindSelector(
                api_group=str(schema.get("group") or KRO_GROUP),
                api_version=str(schema.get("apiVersion") or "v1alpha1"),
                kind=str(kind),
                namespaced=True,
            )
        )
    return selectors


async def discover_selectors(
    fetcher: ResourceFetcher,
    cluster: ClusterRef,
    config: IngestionConfig,
    api: Any = None,
) -> DiscoveryOutcome:
    """Resolve the selectors to fetch from *cluster* this tick.

    A discovery listing that fails is recorded as a kind-scope error and
    marks the outcome incomplete; the selectors that could still be
    resolved, configured ones included, are returned.
    """
    outcome = DiscoveryOutcome()
    errors = outcome.errors

    configured: list[KindSelector] = []
    for definition in config.kind_selectors:
        try:
            configured.append(build_selector(definition))
        except ConfigError as exc:
            _log.warning("kind_selector_skipped", subject=exc.subject, reason=str(exc))
            errors.append(CycleError.from_exception(exc))

    async def _definitions(selector: KindSelector) -> list[RawResource]:
        try:
            return await fetcher.fetch(cluster, selector, api=api)
        except FetchError as exc:
            _log.warning("kind_discovery_failed", cluster=cluster.name, selector=str(selector), error=str(exc))
            outcome.incomplete = True
            errors.append(CycleError.from_exception(exc))
            return []

    discovered: list[KindSelector] = []
    if config.crossplane_enabled:
        discovered.append(COMPOSITION_SELECTOR)
        discovered.extend(selectors_from_xrds(await _definitions(XRD_SELECTOR)))
        if config.crossplane_managed_discovery:
            discovered.extend(selectors_from_managed_crds(await _definitions(CRD_SELECTOR)))
    if config.kro_enabled:
        discovered.append(RGD_SELECTOR)
        discovered.extend(selectors_from_rgds(await _definitions(RGD_SELECTOR)))

    outcome.selectors = merge_selectors(discovered, configured)
    _log.debug("kinds_discovered", cluster=cluster.name, count=len(outcome.selectors))
    return outcome
