# -*- coding: utf-8 -*-
"""Population Metabolism Analysis Module

This module provides functionality for analyzing whole-organism metabolic
rate of spongy moth caterpillars from populations across the invasive range
and relating it to the climate of each population's origin.

The module includes:
    - MetabolismDataLoader: Load the respirometry and climate tables
    - MetabolismDataValidator: Validate data integrity
    - MetabolismPreprocessor: Reshape readings and fold climate records
    - MetabolicRateLMEAnalyzer: Mixed model, ANOVA, diagnostics
    - MarginalMeansAnalyzer: Marginal means and comparison arrows
    - ClimatePCAAnalyzer: PCA of climate/geography variables
    - CrossDomainRegressionAnalyzer: Marginal means ~ PC scores
    - MetabolismReporter, RunMetadata: Report and run documentation

Example:
    >>> from metabolism.data_loader import MetabolismDataLoader
    >>> from metabolism.preprocessor import MetabolismPreprocessor
    >>> from metabolism.lme_analyzer import MetabolicRateLMEAnalyzer
    >>>
    >>> measurements, climate = MetabolismDataLoader().load_data()
    >>> prepared = MetabolismPreprocessor(measurements, climate).preprocess_all()
    >>> fitted = MetabolicRateLMEAnalyzer(prepared.long).fit()
"""

from metabolism.__version__ import __version__
