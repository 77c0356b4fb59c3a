"""Configuration for the force-directed 3D graph layout."""

# =============================================================================
# LAYOUT LOOP
# =============================================================================

LAYOUT = {
    "stable_threshold": 2.001,     # Movement diff below which the layout is stable
    "max_steps": 100_000,          # Step budget for run-until-stable
    "time_budget": None,           # Seconds, None = unbounded
    "log_every": 1000,             # Verbose progress line interval (steps)
    "seed_radius": 10.0,           # Radius scale of the initial golden-angle spiral
}

# =============================================================================
# FORCES
# =============================================================================

# Node separation: negative coefficient repels
GRAVITY = {
    "coeff": -10.0,
    "mode": "barnes_hut",          # "each_on_each" (exact) or "barnes_hut"
    "theta": 0.5,                  # Barnes-Hut opening angle (higher = faster, less accurate)
}

# Link attraction toward the rest length
SPRING = {
    "stiffness": 0.01,
    "length": 20.0,
}

# Fraction of the previous step's displacement removed each step (0, 1]
DRAG = {
    "coeff": 0.8,
}

# =============================================================================
# OCTREE
# =============================================================================

OCTREE = {
    "max_depth": 64,               # Subdivision cap for near-duplicate points
    "initial_half_size": 1.0,      # Root half size when the first point is inserted
    "bounds_margin": 1.0,          # Padding added around the snapshot bounding box
    "initial_capacity": 64,        # Arena nodes pre-allocated for an empty tree
}

# =============================================================================
# CLI
# =============================================================================

CLI = {
    "generator": "tree",           # line, circle, tree, grid, random
    "nodes": 200,
    "steps": None,                 # None = run until stable
    "output": "layout.json",
    "seed": 42,
}
