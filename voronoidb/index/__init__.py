"""Index core: vector math, exact ranking, PNN clustering, cells and caching."""
