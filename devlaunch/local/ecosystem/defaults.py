"""
The launch record of the `upsend` development server.

`wrangler pages dev` serves the built `dist` directory with a local D1
database (`upsend-production`) and a local R2 bucket bound as `IMAGES`.
The flag spelling is consumed by wrangler as-is and must not be normalised.
"""
from .models import Ecosystem, LaunchSpec

UPSEND_APP = {
    "name": "upsend",
    "script": "npx",
    "args": "wrangler pages dev dist --d1=upsend-production --r2=IMAGES --local --ip 0.0.0.0 --port 3000",
    "env": {
        "NODE_ENV": "development",
        "PORT": 3000,
    },
    "watch": False,
    "instances": 1,
    "exec_mode": "fork",
}

UPSEND = LaunchSpec.from_dict(UPSEND_APP)


def default_ecosystem() -> Ecosystem:
    """The ecosystem shipped with the project: the upsend dev server alone."""
    return Ecosystem(apps=[UPSEND])
