"""
Defaults
--------
"""

#: The value a count must be strictly above for the feature to be considered "detected" in a cell. See
#: :py:func:`scmetrics.tools.quality.per_feature_qc_metrics`
#: and
#: :py:func:`scmetrics.tools.quality.per_cell_qc_metrics`.
detection_limit: float = 0

#: The default number of sub-processes to split a computation between. See
#: :py:func:`scmetrics.utilities.parallel.parallel_map`,
#: :py:func:`scmetrics.utilities.computation.sum_groups`
#: and
#: :py:func:`scmetrics.tools.quality.per_feature_qc_metrics`.
processors: int = 1

#: The pseudo-count added to the normalized counts before taking their log. See
#: :py:func:`scmetrics.tools.normalize.normalize_counts`.
pseudo_count: float = 1

#: The number of principal components to compute. See
#: :py:func:`scmetrics.tools.reduce.calculate_pca`
#: and
#: :py:const:`tsne_pca_components`.
pca_components: int = 50

#: The number of highest-variance features to use when computing an embedding. See
#: :py:func:`scmetrics.tools.reduce.calculate_pca`,
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`
#: and
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
top_features: int = 500

#: The number of t-SNE dimensions. See
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`.
tsne_components: int = 2

#: The maximal t-SNE perplexity. See
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`.
tsne_max_perplexity: float = 50

#: The t-SNE perplexity is at most this fraction of the number of cells. See
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`.
tsne_perplexity_cells_fraction: float = 0.2

#: The Barnes-Hut trade-off between speed and accuracy of t-SNE. See
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`.
tsne_theta: float = 0.5

#: The number of principal components to compute before running t-SNE or UMAP on an assay (zero for none). See
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`
#: and
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
tsne_pca_components: int = 50

#: The number of UMAP dimensions. See
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
umap_components: int = 2

#: The number of nearest neighbors used by UMAP. See
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
umap_k: int = 15

#: The minimal distance between points in the UMAP embedding. See
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
umap_min_dist: float = 0.01

#: The effective scale of embedded points in UMAP. See
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
umap_spread: float = 1.0

#: The random seed used for all the stochastic embeddings. See
#: :py:func:`scmetrics.tools.reduce.calculate_pca`,
#: :py:func:`scmetrics.tools.reduce.calculate_tsne`
#: and
#: :py:func:`scmetrics.tools.reduce.calculate_umap`.
random_seed: int = 123456
