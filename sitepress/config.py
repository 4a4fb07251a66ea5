"""Global configuration: paths, constants, settings."""

# Branch that receives published build output
HOSTING_BRANCH = "gh-pages"

# Content branch used when a site does not name one
DEFAULT_CONTENT_BRANCH = "main"

# Identity used for publish commits, distinct from any editing user
BOT_NAME = "SitePress"
BOT_EMAIL = "sitepress-bot@localhost"

# Build defaults for sites that leave them unset
DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_BUILD_OUTPUT_DIR = "dist"

# Deployment log retention per task
MAX_LOG_ENTRIES = 1000
COMPACTED_LOG_ENTRIES = 500

# Terminal tasks older than this are dropped by the cleanup sweep
DEFAULT_TASK_RETENTION_SECONDS = 24 * 60 * 60

# Worker pool size for deployment pipelines
DEFAULT_MAX_WORKERS = 4

# Progress percentage reported for each deployment status
STATUS_PROGRESS = {
    "pending": 0,
    "pulling": 20,
    "building": 50,
    "deploying": 80,
    "completed": 100,
    "failed": 100,
}

# Files probed by the build environment check
BUILD_MANIFEST_FILE = "package.json"
BUILD_DEPENDENCY_DIR = "node_modules"

# Extensions searched when the caller does not pass any
DEFAULT_SEARCH_EXTENSIONS = (".md", ".json")

# Row page size for relational table reads
DEFAULT_ROW_LIMIT = 100
