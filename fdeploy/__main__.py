import asyncio
import sys

from hypercorn.asyncio import serve
from hypercorn.config import Config

import fdeploy.api
import fdeploy.logstreams

if __name__ == "__main__":  # codecov-skip
    cfg, err = fdeploy.api.compile_server_config()
    assert not err

    try:
        fdeploy.logstreams.setup(cfg.loglevel)
        hypercorn_cfg = Config()
        hypercorn_cfg.bind = [f"{cfg.host}:{cfg.port}"]
        asyncio.run(serve(fdeploy.api.make_app(), hypercorn_cfg))  # type: ignore
    except KeyboardInterrupt:
        print("User abort")
        sys.exit(1)
