"""
Differential interaction analysis

Per chromosome and distance pool, interaction counts are modelled with
negative-binomial distributions and tested either with an exact test
between two groups or with a GLM (quasi-likelihood F-test, likelihood
ratio test or fold-change thresholded test).
"""

from .analyzer import DifferentialAnalyzer, hic_exact_test, hic_glm
from .exact import equalize_lib_sizes, exact_test, exact_test_double_tail
from .glm import (estimate_disp, estimate_glm_common_disp_deviance,
                  fit_nb_glm, glm_lrt, glm_ql_fit, glm_ql_ftest, glm_treat,
                  squeeze_var)
from .models import (Coefficient, Contrast, LRTest, QLFTest, Treat,
                     parse_test_method, resolve_selector)
from .results import adjust_pvalues, assemble_results, summarize_results

__all__ = [
    "DifferentialAnalyzer",
    "hic_exact_test",
    "hic_glm",
    "exact_test",
    "exact_test_double_tail",
    "equalize_lib_sizes",
    "estimate_disp",
    "estimate_glm_common_disp_deviance",
    "fit_nb_glm",
    "glm_ql_fit",
    "glm_ql_ftest",
    "glm_lrt",
    "glm_treat",
    "squeeze_var",
    "QLFTest",
    "LRTest",
    "Treat",
    "Coefficient",
    "Contrast",
    "parse_test_method",
    "resolve_selector",
    "adjust_pvalues",
    "assemble_results",
    "summarize_results",
]
