"""
Version information for the population metabolism analysis pipeline.

This file contains version information for the project and its components.
"""

# Main project version
__version__ = "1.0.0"

# Component versions
INGESTION_VERSION = "1.0.0"     # Loading, validation, reshaping
LME_VERSION = "1.0.0"           # Mixed model and marginal means
PCA_VERSION = "1.0.0"           # Climate PCA
REGRESSION_VERSION = "1.0.0"    # Marginal means ~ principal components

# Version history
VERSION_HISTORY = {
    "1.0.0": {
        "date": "2026-10-16",
        "description": "Initial release",
        "changes": [
            "Respirometry and climate table ingestion with schema checks",
            "Wide-to-long reshaping and latitude join",
            "REML mixed model with Type III Wald tests and partial eta squared",
            "Marginal means with Tukey-adjusted comparison arrows",
            "Climate/geography PCA",
            "Per-temperature regressions of marginal means on PC1 and PC2",
            "Figures, Markdown report and run metadata"
        ]
    }
}


def get_version_info() -> str:
    """
    Get formatted version information string.

    Returns:
        Formatted string with version and component information
    """
    info = [
        f"Population Metabolism Analysis Pipeline v{__version__}",
        "",
        "Component Versions:",
        f"  - Ingestion: v{INGESTION_VERSION}",
        f"  - Mixed Model: v{LME_VERSION}",
        f"  - PCA: v{PCA_VERSION}",
        f"  - Regression: v{REGRESSION_VERSION}",
    ]
    return "\n".join(info)


if __name__ == "__main__":
    print(get_version_info())
