"""
Learn a Bayesian network structure from a csv file and write it as a .gph file.

How to run: python learn_structure.py --in data/small.csv --out small.gph --model discrete
"""

import argparse
import time

import matplotlib.pyplot as plt
import networkx as nx

from bn_models import DiscreteBN, GaussianNetwork, SemiparametricBN
from bn_scoring import BIC, BayesianDirichletScore, CVLikelihood, load_continuous_data, load_discrete_data
from search_configs import CONFIGS, get_config
from structure_learning import hill_climb

MODELS = {
    "discrete": DiscreteBN,
    "gaussian": GaussianNetwork,
    "semiparametric": SemiparametricBN,
}
SCORES = ("bic", "bd", "bdeu", "cv")


def make_score(name, df, equivalent_sample_size=10.0, folds=5, seed=0):
    if name == "bic":
        return BIC(df)
    if name == "bd":
        return BayesianDirichletScore(df)
    if name == "bdeu":
        return BayesianDirichletScore(df, equivalent_sample_size=equivalent_sample_size)
    if name == "cv":
        return CVLikelihood(df, k=folds, seed=seed)
    raise ValueError(f"Unknown score {name!r}. Choose one of {SCORES}.")

def read_gph(filename):
    """One "source, target" pair per line."""
    arcs = []
    with open(filename) as f:
        for line in f:
            if not line.strip():
                continue
            u, v = [s.strip() for s in line.split(",")]
            arcs.append((u, v))
    return arcs

def write_gph(model, filename):
    with open(filename, 'w') as f:
        for source, target in model.arcs():
            f.write("{}, {}\n".format(source, target))

def plot_graph(model, filename):
    dag = model.to_networkx()
    plt.figure(figsize=(8, 6))
    pos = nx.spring_layout(dag, seed=0)
    nx.draw_networkx_nodes(dag, pos, node_size=900)
    nx.draw_networkx_labels(dag, pos, font_size=9)
    nx.draw_networkx_edges(dag, pos, arrows=True, arrowstyle='-|>', arrowsize=12)
    plt.axis('off')
    plt.tight_layout()
    plt.savefig(filename, dpi=200)
    plt.close()

def compute(infile, outfile, model="discrete", score=None, plot=False, verbose=True,
            blacklist=None, whitelist=None, **overrides):
    cfg = get_config(model, score=score, **overrides)

    df = load_discrete_data(infile) if model == "discrete" else load_continuous_data(infile)
    start = MODELS[model](df.columns)
    scorer = make_score(cfg["score"], df)

    start_time = time.time()
    dag, best_score = hill_climb(
        df,
        start=start,
        score=scorer,
        operators=cfg["operators"],
        arc_blacklist=read_gph(blacklist) if blacklist else (),
        arc_whitelist=read_gph(whitelist) if whitelist else (),
        max_indegree=cfg["max_indegree"],
        max_iters=cfg["max_iters"],
        epsilon=cfg["epsilon"],
        patience=cfg["patience"],
        verbose=verbose,
    )
    runtime = time.time() - start_time

    write_gph(dag, outfile)
    if plot:
        plot_graph(dag, outfile.replace('.gph', '.png'))

    if verbose:
        print(f"Structure algorithm finished running. Best score = {best_score:.2f}")
        print(f"Runtime = {runtime:.2f} seconds")
        print(f"Graph written to {outfile}.")
        print(f"Edges: {dag.arcs()}")
        if isinstance(dag, SemiparametricBN):
            types = {n: str(t) for n, t in dag.node_types().items()}
            print(f"Node types: {types}")
    return dag, best_score

def main(argv=None):
    parser = argparse.ArgumentParser(description="Score-based structure learning with cached hill climbing.")
    parser.add_argument("--in", dest="in_path", required=True, help="Input csv, one column per variable")
    parser.add_argument("--out", dest="out_path", required=True, help="Output .gph file")
    parser.add_argument("--model", default="discrete", choices=sorted(CONFIGS))
    parser.add_argument("--score", default=None, choices=SCORES, help="Defaults to the model's usual score")
    parser.add_argument("--max-indegree", type=int, default=None)
    parser.add_argument("--max-iters", type=int, default=None)
    parser.add_argument("--patience", type=int, default=None)
    parser.add_argument("--epsilon", type=float, default=None)
    parser.add_argument("--blacklist", default=None, help=".gph file of forbidden arcs")
    parser.add_argument("--whitelist", default=None, help=".gph file of arcs that must be present")
    parser.add_argument("--plot", action="store_true", help="Also draw the graph to a .png next to the output")
    parser.add_argument("--quiet", action="store_true")
    args = parser.parse_args(argv)

    compute(args.in_path, args.out_path, model=args.model, score=args.score, plot=args.plot,
            verbose=not args.quiet, blacklist=args.blacklist, whitelist=args.whitelist,
            max_indegree=args.max_indegree, max_iters=args.max_iters,
            patience=args.patience, epsilon=args.epsilon)


if __name__ == '__main__':
    main()
