"""
Canned exploratory analyses.

Each analysis is a fixed R script run through the bridge against ``df``. The
scripts prefer a specialised package and fall back to base R when it is
missing, so they work on a bare R installation. Each guarded branch also
calls library(pkg), which makes the dependency scanner try to install the
package before the script runs.
"""

from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class Analysis:
    key: str
    title: str
    code: str


BASIC_SUMMARY = "summary(df)"

DETAILED_SUMMARY = r'''
if (requireNamespace("summarytools", quietly = TRUE)) {
  library(summarytools)
  print(summarytools::dfSummary(df))
} else {
  cat("summarytools not installed; using base R\n\n")
  str(df)
  cat("\n--- Summary ---\n")
  print(summary(df))
  cat("\n--- Missing values ---\n")
  print(sapply(df, function(x) sum(is.na(x))))
  cat("\n--- Column classes ---\n")
  print(sapply(df, function(x) class(x)[[1L]]))
  cat("\n--- First rows ---\n")
  print(head(df))
}
'''

TABLE_ONE = r'''
if (requireNamespace("tableone", quietly = TRUE)) {
  library(tableone)
  print(tableone::CreateTableOne(vars = names(df), data = df))
} else {
  cat("tableone not installed; using base R\n\n")
  kind <- sapply(df, function(x) {
    if (is.numeric(x)) "continuous"
    else if (is.factor(x) || is.character(x) || is.logical(x)) "categorical"
    else "other"
  })
  print(kind)

  continuous <- names(kind)[kind == "continuous"]
  if (length(continuous)) {
    cat("\n--- Continuous ---\n")
    stats <- t(sapply(continuous, function(v) {
      x <- df[[v]]
      c(mean = mean(x, na.rm = TRUE), sd = sd(x, na.rm = TRUE),
        min = suppressWarnings(min(x, na.rm = TRUE)),
        median = median(x, na.rm = TRUE),
        max = suppressWarnings(max(x, na.rm = TRUE)),
        missing = sum(is.na(x)))
    }))
    print(round(stats, 3))
  }

  categorical <- names(kind)[kind == "categorical"]
  for (v in categorical) {
    cat("\n", v, ":\n", sep = "")
    print(table(df[[v]], useNA = "ifany"))
  }
}
'''

CATEGORICAL_PLOTS = r'''
palette <- c("#4e79a7", "#f28e2c", "#e15759", "#76b7b2", "#59a14f",
             "#edc949", "#af7aa1", "#ff9da7", "#9c755f", "#bab0ab")
if (requireNamespace("DataExplorer", quietly = TRUE)) {
  library(DataExplorer)
  DataExplorer::plot_bar(df)
} else {
  cat("DataExplorer not installed; using base R\n\n")
  is_categorical <- function(x) {
    is.factor(x) || is.character(x) || is.logical(x) ||
      (is.numeric(x) && length(unique(x)) <= 10)
  }
  vars <- names(df)[sapply(df, is_categorical)]
  if (!length(vars)) {
    cat("No categorical variables found\n")
  } else {
    cols <- min(2, length(vars))
    par(mfrow = c(ceiling(length(vars) / cols), cols), mar = c(4, 4, 3, 2))
    for (i in seq_along(vars)) {
      colour <- palette[(i - 1) %% length(palette) + 1]
      barplot(table(df[[vars[i]]], useNA = "ifany"), main = vars[i], las = 2,
              cex.names = 0.7, col = colour, border = "white")
    }
  }
}
'''

NUMERICAL_PLOTS = r'''
palette <- c("#4e79a7", "#f28e2c", "#e15759", "#76b7b2", "#59a14f",
             "#edc949", "#af7aa1", "#ff9da7", "#9c755f", "#bab0ab")
if (requireNamespace("DataExplorer", quietly = TRUE)) {
  library(DataExplorer)
  DataExplorer::plot_histogram(df)
  DataExplorer::plot_qq(df)
} else {
  cat("DataExplorer not installed; using base R\n\n")
  vars <- head(names(df)[sapply(df, is.numeric)], 8)
  if (!length(vars)) {
    cat("No numerical variables found\n")
  } else {
    cols <- min(2, length(vars))
    layout <- c(ceiling(length(vars) / cols), cols)

    par(mfrow = layout, mar = c(4, 4, 3, 2))
    for (i in seq_along(vars)) {
      hist(df[[vars[i]]], main = paste("Histogram of", vars[i]), xlab = vars[i],
           col = palette[(i - 1) %% length(palette) + 1], border = "white")
    }

    par(mfrow = layout, mar = c(4, 4, 3, 2))
    for (i in seq_along(vars)) {
      qqnorm(df[[vars[i]]], main = paste("QQ plot of", vars[i]), pch = 19,
             col = palette[(i - 1) %% length(palette) + 1])
      qqline(df[[vars[i]]], col = "red", lwd = 2)
    }
    cat("Plotted", length(vars), "numerical variable(s)\n")
  }
}
'''

CORRELATION_PLOT = r'''
numeric_df <- df[, sapply(df, is.numeric), drop = FALSE]
if (ncol(numeric_df) < 2) {
  cat("Not enough numeric columns for a correlation plot\n")
} else {
  m <- cor(numeric_df, use = "complete.obs")
  if (requireNamespace("corrplot", quietly = TRUE)) {
    library(corrplot)
    corrplot::corrplot(m, method = "circle")
  } else {
    cat("corrplot not installed; using base R\n\n")
    print(round(m, 2))
    n <- ncol(m)
    par(mar = c(8, 8, 4, 2))
    image(1:n, 1:n, t(m)[, n:1], zlim = c(-1, 1),
          col = colorRampPalette(c("blue", "white", "red"))(100),
          axes = FALSE, xlab = "", ylab = "", main = "Correlation matrix")
    axis(1, 1:n, colnames(m), las = 2, cex.axis = 0.7)
    axis(2, 1:n, rev(rownames(m)), las = 2, cex.axis = 0.7)
    text(expand.grid(1:n, 1:n), labels = round(c(t(m)[, n:1]), 2), cex = 0.6)
  }
}
'''

ANALYSES: Dict[str, Analysis] = {
    a.key: a
    for a in (
        Analysis("basic", "Basic summary", BASIC_SUMMARY),
        Analysis("detailed", "Detailed summary", DETAILED_SUMMARY.strip()),
        Analysis("tableone", "Table one", TABLE_ONE.strip()),
        Analysis("categorical", "Categorical variables", CATEGORICAL_PLOTS.strip()),
        Analysis("numerical", "Numerical variables", NUMERICAL_PLOTS.strip()),
        Analysis("correlation", "Correlation plot", CORRELATION_PLOT.strip()),
    )
}


def list_analyses() -> List[Dict[str, str]]:
    return [{"key": a.key, "title": a.title} for a in ANALYSES.values()]


def get_analysis(key: str) -> Analysis:
    """Raises KeyError for an unknown key."""
    return ANALYSES[key]
