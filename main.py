"""
Launcher for the R bridge HTTP API.
"""
import logging
import os

# Configure logging early to see R session initialization
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


def print_configuration():
    print("=" * 60)
    print("R ANALYSIS BRIDGE - CONFIGURATION")
    print("=" * 60)
    print(f"  RBRIDGE_PRIMARY_REPO:      {os.environ.get('RBRIDGE_PRIMARY_REPO', '(not set - Posit Package Manager)')}")
    print(f"  RBRIDGE_FALLBACK_REPO:     {os.environ.get('RBRIDGE_FALLBACK_REPO', '(not set - cloud.r-project.org)')}")
    print(f"  RBRIDGE_BASELINE_PACKAGES: {os.environ.get('RBRIDGE_BASELINE_PACKAGES', '(not set - ggplot2,dplyr,base64enc,knitr)')}")
    print(f"  RBRIDGE_LIBRARY_DIR:       {os.environ.get('RBRIDGE_LIBRARY_DIR', '(not set - R default library)')}")
    print(f"  RBRIDGE_CATALOG_PACKAGES:  {os.environ.get('RBRIDGE_CATALOG_PACKAGES', '(not set - datasets)')}")
    print(f"  RBRIDGE_RETRY_ON_ERROR:    {os.environ.get('RBRIDGE_RETRY_ON_ERROR', '(not set - default: true)')}")
    print(f"  LLM_PROVIDER:              {os.environ.get('LLM_PROVIDER', '(not set - openai)')}")
    print(f"  MOCK_LLM:                  {os.environ.get('MOCK_LLM', '(not set - default: false)')}")
    print("=" * 60)
    print()

    if not os.environ.get("RBRIDGE_LIBRARY_DIR"):
        print("TIP: Set RBRIDGE_LIBRARY_DIR to a writable directory so missing")
        print("  R packages can be installed without root permissions.")
        print()


if __name__ == "__main__":
    import uvicorn

    print_configuration()

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    # Single worker: the process hosts exactly one R interpreter.
    uvicorn.run("rbridge.api:app", host=host, port=port, log_level="info", workers=1)
