from .builder import (
    changes_resolution,
    merge_appendices,
    merge_partial_into,
    override_keys,
    update_appendix,
)
from .gc import (
    GcResult,
    collect_garbage,
    in_dependency_sets,
    in_installed_tree,
    is_live,
    protected_by_override_paths,
)
from .ledger import LedgerInputs, SecurityDetail, collect_reason_candidates
from .patches import attach_patches, find_unused_patches, parse_patch_filename
from .pipeline import RunCache, UpdateOptions, UpdateResult, run_update
from .workspaces import WorkspaceResult, aggregate_workspaces
