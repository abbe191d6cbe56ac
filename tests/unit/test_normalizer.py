"""Tests for entity normalization: ids, classification, annotations and relations."""

from __future__ import annotations

import pytest

from kubeingest.errors import ErrorScope, ValidationError
from kubeingest.graph import GraphBuilder
from kubeingest.graph.builder import KRO_INSTANCE_LABEL, KRO_RGD_LABEL
from kubeingest.models.config import ClusterNameMappingConfig, IngestionConfig
from kubeingest.models.entities import EntityKind, RelationType
from kubeingest.normalizer import EntityNormalizer, component_type, entity_id, normalize, validate_resource
from kubeingest.normalizer.annotations import map_cluster_name, parse_component_annotations
from tests.factories import make_cluster, make_resource

PREFIX = "terasky.backstage.io"


def _xr_with_buckets():
    return [
        make_resource(
            "XBucket",
            "media",
            "xr",
            api_group="platform.example.org",
            spec={"crossplane": {"compositionRef": {"name": "xbuckets-aws"}}},
        ),
        make_resource(
            "Bucket",
            "media-a",
            "b1",
            owners=["xr"],
            api_group="s3.aws.upbound.io",
            api_version="v1beta1",
            spec={"forProvider": {"region": "eu-west-1"}},
        ),
        make_resource(
            "Bucket",
            "media-b",
            "b2",
            owners=["xr"],
            api_group="s3.aws.upbound.io",
            api_version="v1beta1",
            spec={"forProvider": {"region": "eu-west-1"}},
        ),
    ]


def _by_id(entities):
    return {e.id: e for e in entities}


class TestEntityIds:
    def test_cluster_scoped_id(self) -> None:
        resource = make_resource("Bucket", "logs", "u1", namespaced=False)
        assert entity_id(resource) == "cluster-1/bucket/cluster-scoped/logs"

    def test_namespaced_id(self) -> None:
        resource = make_resource("BucketClaim", "logs", "u1", namespace="team-a")
        assert entity_id(resource) == "cluster-1/bucketclaim/team-a/logs"

    def test_id_independent_of_uid(self) -> None:
        before = make_resource("Bucket", "logs", "uid-old", namespaced=False)
        after = make_resource("Bucket", "logs", "uid-new", namespaced=False)
        assert entity_id(before) == entity_id(after)

    def test_clusters_never_collide(self) -> None:
        one = make_resource("Bucket", "logs", "u1", cluster=make_cluster("one"))
        two = make_resource("Bucket", "logs", "u1", cluster=make_cluster("two"))
        assert entity_id(one) != entity_id(two)


class TestValidation:
    @pytest.mark.parametrize("namespace", ["", "Team_A", "-lead", "a" * 64])
    def test_invalid_namespace_rejected(self, namespace: str) -> None:
        resource = make_resource("BucketClaim", "c", "u", namespace=namespace or None, namespaced=True)
        with pytest.raises(ValidationError):
            validate_resource(resource)

    def test_cluster_scoped_needs_no_namespace(self) -> None:
        validate_resource(make_resource("Bucket", "b", "u", namespaced=False))

    def test_invalid_resource_skipped_with_error(self) -> None:
        resources = [
            make_resource("XBucket", "xr", "xr", namespace="team-a"),
            make_resource("BucketClaim", "bad", "bad", namespace="Not_Valid", owners=["xr"]),
        ]
        entities, errors = EntityNormalizer().normalize_graphs(GraphBuilder().build(resources))

        assert [e.name for e in entities] == ["xr"]
        assert [e.scope for e in errors] == [ErrorScope.RESOURCE]
        assert entities[0].relations == ()


class TestClassification:
    def test_xr_with_children_is_root_and_children_managed(self) -> None:
        graphs = GraphBuilder().build(_xr_with_buckets())
        entities, errors = EntityNormalizer().normalize_graphs(graphs)

        assert errors == []
        assert [e.kind for e in entities] == [EntityKind.ROOT, EntityKind.MANAGED, EntityKind.MANAGED]

    def test_lonely_claim_is_root(self) -> None:
        claim = make_resource(
            "BucketClaim", "c", "u", namespace="team-a", spec={"resourceRef": {"kind": "XBucket", "name": "gone"}}
        )
        [entity], _ = EntityNormalizer().normalize_graphs(GraphBuilder().build([claim]))
        assert entity.kind == EntityKind.ROOT

    def test_composition_and_other(self) -> None:
        resources = [
            make_resource("Composition", "comp", "comp", api_group="apiextensions.crossplane.io"),
            make_resource("Widget", "w", "w"),
        ]
        entities, _ = EntityNormalizer().normalize_graphs(GraphBuilder().build(resources))
        assert [e.kind for e in entities] == [EntityKind.COMPOSITION, EntityKind.OTHER]

    @pytest.mark.parametrize(
        ("kwargs", "expected"),
        [
            ({"kind": "Composition", "api_group": "apiextensions.crossplane.io"}, "crossplane-composition"),
            ({"kind": "ResourceGraphDefinition", "api_group": "kro.run"}, "kro-rgd"),
            ({"labels": {KRO_INSTANCE_LABEL: "i"}}, "managed-resource"),
            ({"labels": {KRO_RGD_LABEL: "r"}}, "kro-instance"),
            ({"spec": {"resourceRef": {"kind": "XBucket", "name": "x"}}}, "crossplane-claim"),
            ({"spec": {"resourceRefs": []}}, "crossplane-xr"),
            ({"spec": {"crossplane": {"compositionRef": {"name": "c"}}}}, "crossplane-xr"),
            ({"spec": {"forProvider": {}}}, "managed-resource"),
            ({"spec": {"providerConfigRef": {"name": "default"}}}, "managed-resource"),
            ({"spec": {"replicas": 2}}, None),
        ],
    )
    def test_component_type(self, kwargs: dict, expected: str | None) -> None:
        assert component_type(make_resource(**kwargs)) == expected


class TestAnnotations:
    def test_synthesized_annotations(self) -> None:
        entities, _ = EntityNormalizer().normalize_graphs(GraphBuilder().build(_xr_with_buckets()))
        entities = _by_id(entities)
        xr = entities["cluster-1/xbucket/cluster-scoped/media"]
        bucket = entities["cluster-1/bucket/cluster-scoped/media-a"]

        assert xr.annotations[f"{PREFIX}/component-type"] == "crossplane-xr"
        assert xr.annotations[f"{PREFIX}/composition-name"] == "xbuckets-aws"
        assert xr.annotations[f"{PREFIX}/entity-kind"] == "Root"
        assert bucket.annotations[f"{PREFIX}/graph-root"] == xr.id
        assert bucket.annotations[f"{PREFIX}/source-api-version"] == "s3.aws.upbound.io/v1beta1"
        assert bucket.annotations[f"{PREFIX}/uid"] == "b1"
        assert bucket.annotations["backstage.io/kubernetes-cluster"] == "cluster-1"
        assert bucket.annotations["backstage.io/managed-by-location"] == "cluster origin: cluster-1"

    def test_no_component_type_annotation_when_unknown(self) -> None:
        [entity], _ = EntityNormalizer().normalize_graphs(GraphBuilder().build([make_resource("Widget", "w", "w")]))
        assert f"{PREFIX}/component-type" not in entity.annotations

    def test_source_annotations_and_custom_component_annotations(self) -> None:
        resource = make_resource(
            "Widget",
            "w",
            "w",
            annotations={
                "team": "platform",
                f"{PREFIX}/component-annotations": "backstage.io/techdocs-ref=dir:., broken, =x",
            },
        )
        [entity], _ = EntityNormalizer().normalize_graphs(GraphBuilder().build([resource]))

        assert entity.annotations["team"] == "platform"
        assert entity.annotations["backstage.io/techdocs-ref"] == "dir:."

    def test_synthesized_annotations_cannot_be_overridden(self) -> None:
        resource = make_resource("Widget", "w", "w", annotations={f"{PREFIX}/cluster": "spoofed"})
        [entity], _ = EntityNormalizer().normalize_graphs(GraphBuilder().build([resource]))
        assert entity.annotations[f"{PREFIX}/cluster"] == "cluster-1"

    def test_custom_prefix(self) -> None:
        config = IngestionConfig(annotation_prefix="example.com")
        [entity], _ = EntityNormalizer(config).normalize_graphs(GraphBuilder().build([make_resource("Widget")]))
        assert "example.com/uid" in entity.annotations
        assert f"{PREFIX}/uid" not in entity.annotations

    def test_argo_app_name(self) -> None:
        resource = make_resource(
            "Widget", "w", "w", annotations={"argocd.argoproj.io/tracking-id": "payments:platform/XBucket:ns/w"}
        )
        graphs = GraphBuilder().build([resource])

        [on], _ = EntityNormalizer().normalize_graphs(graphs)
        [off], _ = EntityNormalizer(IngestionConfig(argo_integration=False)).normalize_graphs(graphs)

        assert on.annotations["argocd/app-name"] == "payments"
        assert "argocd/app-name" not in off.annotations

    def test_cluster_name_mapping(self) -> None:
        mapping = ClusterNameMappingConfig(mode="explicit", mappings={"cluster-1": "Production"})
        config = IngestionConfig(cluster_name_mapping=mapping)
        [entity], _ = EntityNormalizer(config).normalize_graphs(GraphBuilder().build([make_resource("Widget")]))

        assert entity.annotations["backstage.io/kubernetes-cluster"] == "Production"
        assert entity.cluster == "cluster-1"


class TestClusterNameMapping:
    def test_prefix_replacement(self) -> None:
        mapping = ClusterNameMappingConfig(mode="prefix-replacement", source_prefix="eks-", target_prefix="aws-")
        assert map_cluster_name("eks-prod", mapping) == "aws-prod"
        assert map_cluster_name("gke-prod", mapping) == "gke-prod"

    def test_no_mode_passes_through(self) -> None:
        assert map_cluster_name("prod", ClusterNameMappingConfig()) == "prod"

    def test_parse_component_annotations(self) -> None:
        assert parse_component_annotations("a=1, b = 2,c=") == {"a": "1", "b": "2"}


class TestRelations:
    def test_owner_and_dependency_relations(self) -> None:
        resources = [
            make_resource("Composition", "xbuckets-aws", "comp", api_group="apiextensions.crossplane.io"),
            *_xr_with_buckets(),
        ]
        entities = _by_id(EntityNormalizer().normalize_graphs(GraphBuilder().build(resources))[0])
        xr = entities["cluster-1/xbucket/cluster-scoped/media"]
        comp = entities["cluster-1/composition/cluster-scoped/xbuckets-aws"]
        bucket = entities["cluster-1/bucket/cluster-scoped/media-b"]

        assert [(r.type, r.target_id) for r in xr.relations] == [
            (RelationType.OWNS, "cluster-1/bucket/cluster-scoped/media-a"),
            (RelationType.OWNS, "cluster-1/bucket/cluster-scoped/media-b"),
            (RelationType.DEPENDS_ON, comp.id),
        ]
        assert [(r.type, r.target_id) for r in comp.relations] == [(RelationType.DEPENDENCY_OF, xr.id)]
        assert [(r.type, r.target_id) for r in bucket.relations] == [(RelationType.OWNED_BY, xr.id)]


class TestDeterminism:
    def test_identical_input_identical_bytes(self) -> None:
        first, _ = EntityNormalizer().normalize_graphs(GraphBuilder().build(_xr_with_buckets()))
        second, _ = EntityNormalizer().normalize_graphs(GraphBuilder().build(_xr_with_buckets()))

        assert [e.to_json() for e in first] == [e.to_json() for e in second]
        assert [e.content_hash for e in first] == [e.content_hash for e in second]

    def test_annotation_order_does_not_change_bytes(self) -> None:
        one = make_resource("Widget", "w", "w", annotations={"a": "1", "b": "2"})
        two = make_resource("Widget", "w", "w", annotations={"b": "2", "a": "1"})
        [e1], _ = EntityNormalizer().normalize_graphs(GraphBuilder().build([one]))
        [e2], _ = EntityNormalizer().normalize_graphs(GraphBuilder().build([two]))
        assert e1.to_json() == e2.to_json()


class TestDuplicateIds:
    def test_second_resource_with_same_id_rejected(self) -> None:
        resources = [
            make_resource("Bucket", "same", "u1", namespaced=False),
            make_resource("Bucket", "same", "u2", namespaced=False),
        ]
        entities, errors = EntityNormalizer().normalize_graphs(GraphBuilder().build(resources))

        assert len(entities) == 1
        assert entities[0].annotations[f"{PREFIX}/uid"] == "u1"
        assert len(errors) == 1


class TestSingleNode:
    def test_normalize_one_node(self) -> None:
        [graph] = GraphBuilder().build(_xr_with_buckets())
        node = graph.get("b2")

        entity = normalize(node, graph)

        assert entity.id == "cluster-1/bucket/cluster-scoped/media-b"
        assert entity.kind == EntityKind.MANAGED

    def test_annotation_prefix_keyword(self) -> None:
        [graph] = GraphBuilder().build(_xr_with_buckets())

        entity = normalize(graph.get("b2"), graph, annotation_prefix="platform.example.org")

        assert entity.annotations["platform.example.org/uid"] == "b2"
        assert f"{PREFIX}/uid" not in entity.annotations

    def test_node_by_node_matches_whole_graph(self) -> None:
        [graph] = GraphBuilder().build(_xr_with_buckets())
        normalizer = EntityNormalizer()

        one_by_one = [normalizer.normalize(node, graph).to_json() for node in graph.nodes]
        whole, _ = EntityNormalizer().normalize_graph(graph)

        assert one_by_one == [e.to_json() for e in whole]

    def test_invalid_node_raises(self) -> None:
        [graph] = GraphBuilder().build([make_resource("BucketClaim", "c", "u", namespace="BAD")])
        with pytest.raises(ValidationError):
            normalize(graph.root_node, graph)
