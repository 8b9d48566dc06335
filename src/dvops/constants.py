"""Shared constants for dataverse-ops."""

DEFAULT_ENV_FILE = ".env"
DEFAULT_CONFIG_FILE = ".dvops.yml"
SYNC_LOG_FILE = "dataverse_sync.log"
UPGRADE_LOG_FILE = "dataverse_upgrade.log"
UPGRADE_STATE_FILE = "dataverse_upgrade_state.json"

LOCAL_GROUP = "local Dataverse"
PRODUCTION_GROUP = "production Dataverse"
DATABASE_GROUP = "database connection"
COUNTER_GROUP = "counter processor"
UPGRADE_GROUP = "upgrade"

KEY_GROUPS = {
    LOCAL_GROUP: (
        "DOMAIN",
        "PAYARA",
        "DATAVERSE_USER",
        "SOLR_USER",
        "DATAVERSE_CONTENT_STORAGE",
        "SOLR_PATH",
    ),
    PRODUCTION_GROUP: (
        "PRODUCTION_DOMAIN",
        "PRODUCTION_DATAVERSE_USER",
        "PRODUCTION_SOLR_USER",
        "PRODUCTION_DATAVERSE_CONTENT_STORAGE",
        "PRODUCTION_SOLR_PATH",
    ),
    DATABASE_GROUP: (
        "PRODUCTION_SERVER",
        "PRODUCTION_DB_HOST",
        "DB_HOST",
        "DB_NAME",
        "DB_USER",
        "PRODUCTION_DB_NAME",
        "PRODUCTION_DB_USER",
    ),
    COUNTER_GROUP: (
        "COUNTER_DAILY_SCRIPT",
        "COUNTER_WEEKLY_SCRIPT",
        "COUNTER_PROCESSOR_DIR",
        "PRODUCTION_COUNTER_DAILY_SCRIPT",
        "PRODUCTION_COUNTER_WEEKLY_SCRIPT",
        "PRODUCTION_COUNTER_PROCESSOR_DIR",
    ),
    UPGRADE_GROUP: ("DOMAIN", "PAYARA", "DATAVERSE_USER"),
}

SYNC_REQUIRED_GROUPS = (LOCAL_GROUP, PRODUCTION_GROUP, DATABASE_GROUP)

SYNC_REQUIRED_COMMANDS = ("rsync", "ssh", "psql", "pg_dump", "systemctl", "sudo")
UPGRADE_REQUIRED_COMMANDS = ("sudo", "systemctl", "pgrep")

DEFAULT_API_URL = "http://localhost:8080"
DEFAULT_PAYARA_SERVICE = "payara"
DEFAULT_SOLR_SERVICE = "solr"
DEFAULT_SOLR_DIR = "/usr/local/solr"

DOMAIN_XML_RELPATH = "glassfish/domains/domain1/config/domain.xml"
DOMAINS_RELPATH = "glassfish/domains"
DOMAIN1_RELPATH = "glassfish/domains/domain1"
SOLR_COLLECTION_RELPATH = "server/solr/collection1"

CONTENT_EXCLUDES = (
    "*.pem",
    "*.key",
    "*.keystore",
    "*.jks",
    "secrets.env",
    "*.cer",
    "*.crt",
    "domain.xml",
    "keyfile",
    "password",
    ".secret",
    ".env",
)
CONTENT_MAX_SIZE = "2M"
SOLR_CONFIG_EXCLUDES = ("*.keystore", "*.jks", "security.json")
COUNTER_EXCLUDES = ("*.log", "application.properties")

REMOTE_DUMP_PATH = "/tmp/dataverse_dump.sql"
TEST_INSTANCE_NOTICE = "THIS IS A TEST INSTANCE - NOT PRODUCTION"
POST_RESTORE_SQL = f"""
-- Disable DOI registration if it exists
UPDATE setting SET content = 'false' WHERE name = 'DoiProvider.isActive';
-- Set site as non-production
INSERT INTO setting (name, content) VALUES ('SiteNotice', '{TEST_INSTANCE_NOTICE}')
ON CONFLICT (name) DO UPDATE SET content = '{TEST_INSTANCE_NOTICE}';
-- Disable any email sending
UPDATE setting SET content = 'false' WHERE name IN ('SystemEmail.enabled', 'MailService.enabled');
""".strip()

CRONTAB_PLACEHOLDER = "# No crontab found on production"
CRONTAB_REVIEW_FILE = "dataverse_crontab_for_review"
BACKUP_DIR_PREFIX = "dataverse_clone_backup_"

PAYARA_GENERATED_DIRS = ("generated", "osgi-cache", "lib/databases")
NO_APPLICATIONS_MARKER = "No applications are deployed to this target server"

SERVER_START_PAUSE_SECONDS = 5.0
VERSION_POLL_INTERVAL_SECONDS = 5.0
VERSION_POLL_TIMEOUT_SECONDS = 300.0

DIR_MODE = 0o755
SCRIPT_MODE = 0o755
FILE_MODE = 0o644
