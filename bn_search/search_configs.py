#search parameters that differ by kind of data
DEFAULTS = dict(
    operators=("arcs",),
    max_indegree=0,  #<= 0 means no limit
    max_iters=None,
    epsilon=0.0,
    patience=0,
)

DISCRETE = dict(
    DEFAULTS,
    model="discrete",
    score="bd",
    max_indegree=3,
)

GAUSSIAN = dict(
    DEFAULTS,
    model="gaussian",
    score="bic",
)

SEMIPARAMETRIC = dict(
    DEFAULTS,
    model="semiparametric",
    score="cv",
    operators=("arcs", "node_type"),
    patience=5,
)

CONFIGS = {
    "discrete": DISCRETE,
    "gaussian": GAUSSIAN,
    "semiparametric": SEMIPARAMETRIC,
}


def get_config(model, **overrides):
    """Config of the given model kind with every non-None override applied."""
    if model not in CONFIGS:
        raise ValueError(f"Unknown model {model!r}. Choose one of {sorted(CONFIGS)}.")
    cfg = dict(CONFIGS[model])
    cfg.update({k: v for k, v in overrides.items() if v is not None})
    return cfg
