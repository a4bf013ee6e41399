from __future__ import annotations

import logging
import sys

from quotesync.bootstrap.exception_handler import handle_global_exception
from quotesync.entrypoints.cli import main


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except SystemExit:
        raise
    except Exception:  # noqa: BLE001
        logging.getLogger(__name__).exception("Error no controlado en entrypoint")
        exc_type, exc_value, exc_traceback = sys.exc_info()
        if exc_type is None or exc_value is None or exc_traceback is None:
            raise
        incident_id = handle_global_exception(exc_type, exc_value, exc_traceback)
        print(f"Se produjo un error interno (incidente {incident_id}). Revisa el archivo de logs para más detalles.")
        raise SystemExit(2)
