"""Dataset catalog offered to the dataset selector."""

import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

# Friendly labels for the datasets shown first in the selector.
FEATURED_DATASETS: Dict[str, str] = {
    "attitude": "Attitude Survey",
    "iris": "Iris Flower Data",
    "mtcars": "Motor Trend Cars",
    "diamonds": "Diamonds (ggplot2)",
    "ability.cov": "Ability Covariance Matrix",
    "Orange": "Orange Trees Growth",
    "USArrests": "US Arrests by State",
    "airquality": "New York Air Quality",
    "faithful": "Old Faithful Geyser",
    "ChickWeight": "Chick Weights",
}


class DatasetCatalog:
    """Lists the datasets shipped by the configured R packages."""

    def __init__(self, session, settings=None):
        self.session = session
        self.settings = settings or session.settings

    def entries(self) -> List[Dict[str, str]]:
        with self.session.vector("character", self.settings.catalog_packages) as packages:
            catalog = self.session.invoke("dataset_catalog", packages)

        values = catalog.get("value") or []
        titles = dict(zip(values, catalog.get("label") or []))

        featured = [v for v in FEATURED_DATASETS if v in titles]
        rest = sorted((v for v in values if v not in FEATURED_DATASETS), key=str.lower)

        entries = [{"value": v, "label": FEATURED_DATASETS[v]} for v in featured]
        entries += [{"value": v, "label": titles[v] or v} for v in rest]
        logger.info(f"[R-DATA] Catalog: {len(entries)} datasets from {', '.join(self.settings.catalog_packages)}")
        return entries
