"""
Run the proxy with: python -m copilot_proxy
"""

from copilot_proxy.app.main import run

if __name__ == "__main__":
    run()
