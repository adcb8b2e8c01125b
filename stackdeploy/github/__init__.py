from .actions import (  # noqa: F401
    append_step_summary,
    build_matrix,
    in_github_actions,
    mask_values,
    render_run_summary,
    set_output,
)
