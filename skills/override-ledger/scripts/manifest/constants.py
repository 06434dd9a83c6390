from __future__ import annotations

CONFIG_KEY = "pastoralist"

CONFIG_FILES = (
    ".pastoralistrc",
    ".pastoralistrc.json",
    "pastoralist.json",
)

WORKSPACE_SENTINELS = ("workspace", "workspaces")

PATCH_GLOBS = (
    "patches/*.patch",
    ".patches/*.patch",
    "*.patch",
    "patches/**/*.patch",
)

EXCLUDE_DIRS = {
    ".git",
    ".yarn",
    ".pnpm-store",
    "node_modules",
}

PRESERVED_CONFIG_KEYS = ("depPaths", "overridePaths", "resolutionPaths", "security", "compactAppendix")

NPM_LS_CMD = ("npm", "ls", "--json", "--all")
NPM_LS_TIMEOUT = 60.0
