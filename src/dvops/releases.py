"""Release catalog: what an in-place upgrade to each supported version needs."""

from dataclasses import dataclass, field
from typing import Dict, Tuple

from .errors import ConfigurationError

_DATAVERSE_DOWNLOADS = "https://github.com/IQSS/dataverse/releases/download"
_DATAVERSE_RAW = "https://raw.githubusercontent.com/IQSS/dataverse"
_PAYARA_DOWNLOADS = (
    "https://nexus.payara.fish/repository/payara-community/fish/payara/distributions/payara"
)


@dataclass(frozen=True)
class Artifact:
    url: str
    sha1: str

    @property
    def file_name(self) -> str:
        return self.url.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class MetadataBlock:
    name: str
    url: str
    optional: bool = False


@dataclass(frozen=True)
class Release:
    """Everything the upgrade pipeline needs to move from ``previous_version``."""

    version: str
    previous_version: str
    war: Artifact
    payara_version: str
    payara: Artifact
    solr_version: str
    solr_config_url: str
    solr_schema_url: str
    update_fields_url: str
    metadata_blocks: Tuple[MetadataBlock, ...]
    jvm_options: Tuple[str, ...]
    metadata_source_facet: Tuple[str, ...] = ()
    solr_optimizations: Tuple[str, ...] = ()
    keyword_migration_sql: Dict[str, str] = field(default_factory=dict)

    @property
    def war_name(self) -> str:
        return f"dataverse-{self.version}"

    @property
    def previous_war_name(self) -> str:
        return f"dataverse-{self.previous_version}"

    @property
    def required_metadata_blocks(self) -> Tuple[MetadataBlock, ...]:
        return tuple(block for block in self.metadata_blocks if not block.optional)

    @property
    def optional_metadata_blocks(self) -> Tuple[MetadataBlock, ...]:
        return tuple(block for block in self.metadata_blocks if block.optional)


def _metadata_block(version: str, name: str, optional: bool = False) -> MetadataBlock:
    return MetadataBlock(
        name=name,
        url=f"{_DATAVERSE_RAW}/v{version}/scripts/api/data/metadatablocks/{name}.tsv",
        optional=optional,
    )


KEYWORD_TERM_URI_SQL = {
    "inspect": (
        "SELECT value FROM datasetfieldvalue dfv "
        "INNER JOIN datasetfield df ON df.id = dfv.datasetfield_id "
        "WHERE df.datasetfieldtype_id = (SELECT id FROM datasetfieldtype WHERE name = 'keywordValue') "
        "AND value ILIKE 'http%';"
    ),
    "migrate": (
        "UPDATE datasetfield df "
        "SET datasetfieldtype_id = (SELECT id FROM datasetfieldtype WHERE name = 'keywordTermURI') "
        "FROM datasetfieldvalue dfv "
        "WHERE dfv.datasetfield_id = df.id "
        "AND df.datasetfieldtype_id = (SELECT id FROM datasetfieldtype WHERE name = 'keywordValue') "
        "AND dfv.value ILIKE 'http%';"
    ),
}

DATAVERSE_6_3 = Release(
    version="6.3",
    previous_version="6.2",
    war=Artifact(
        url=f"{_DATAVERSE_DOWNLOADS}/v6.3/dataverse-6.3.war",
        sha1="264665217a80d4a6504b60a5978aa17f3b3205b5",
    ),
    payara_version="6.2024.6",
    payara=Artifact(
        url=f"{_PAYARA_DOWNLOADS}/6.2024.6/payara-6.2024.6.zip",
        sha1="5c67893491625d589f941309f8d83a36d1589ec8",
    ),
    solr_version="9.4.1",
    solr_config_url=f"{_DATAVERSE_RAW}/v6.3/conf/solr/solrconfig.xml",
    solr_schema_url=f"{_DATAVERSE_RAW}/v6.3/conf/solr/schema.xml",
    update_fields_url=f"{_DATAVERSE_RAW}/v6.3/conf/solr/update-fields.sh",
    metadata_blocks=(
        _metadata_block("6.3", "citation"),
        _metadata_block("6.3", "biological"),
        _metadata_block("6.3", "computational_workflow", optional=True),
    ),
    jvm_options=(
        "--add-opens=java.management/javax.management=ALL-UNNAMED",
        "--add-opens=java.management/javax.management.openmbean=ALL-UNNAMED",
        "[17|]--add-opens=java.base/java.io=ALL-UNNAMED",
        "[21|]--add-opens=java.base/jdk.internal.misc=ALL-UNNAMED",
    ),
    metadata_source_facet=("dataverse.feature.index-harvested-metadata-source=true",),
    solr_optimizations=(
        "dataverse.feature.add-publicobject-solr-field=true",
        "dataverse.feature.avoid-expensive-solr-join=true",
        "dataverse.feature.reduce-solr-deletes=true",
    ),
    keyword_migration_sql=KEYWORD_TERM_URI_SQL,
)

RELEASES: Dict[str, Release] = {DATAVERSE_6_3.version: DATAVERSE_6_3}
DEFAULT_TARGET_VERSION = DATAVERSE_6_3.version


def get_release(version: str) -> Release:
    try:
        return RELEASES[version]
    except KeyError:
        supported = ", ".join(sorted(RELEASES))
        raise ConfigurationError(
            f"Unsupported target version '{version}'. Supported versions: {supported}"
        ) from None
