from .config import effective_config, load_external_config, manifest_config, merge_config
from .constants import CONFIG_FILES, CONFIG_KEY, PATCH_GLOBS, WORKSPACE_SENTINELS
from .discovery import (
    find_files,
    find_member_manifests,
    find_patch_files,
    match_globs,
    resolve_dep_paths,
    workspace_globs,
)
from .overrides import (
    OverrideKind,
    OverrideSource,
    existing_kind,
    normalize_overrides,
    remove_overrides,
    resolve_overrides,
)
from .render import render_manifest, to_compact_appendix
from .store import ManifestError, ManifestStore
from .tree import DependencyTree, npm_ls, parse_npm_ls_output
