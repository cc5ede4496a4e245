import json
import sys
from pathlib import Path

from edi_services.config.env import get_app_config
from edi_services.errors import EdiError
from edi_services.ingestion.x12 import parse_interchange
from edi_services.mapper.engine import apply
from edi_services.mapper.registry import ProfileRegistry


def main():
    if len(sys.argv) != 3:
        print("Usage: python -m edi_services.mapper.cli <retailer id> <edi file>")
        sys.exit(2)
    retailer_id, path = sys.argv[1], Path(sys.argv[2])
    registry = ProfileRegistry.load(get_app_config().mappings_dir)
    try:
        interchange = parse_interchange(path.read_text(encoding="utf-8"))
        tx = interchange.first_transaction()
        profile = registry.get(retailer_id, tx.code)
    except OSError as e:
        print(json.dumps({"error": "FILE_NOT_READABLE", "message": str(e)}, indent=2))
        sys.exit(1)
    except EdiError as e:
        print(json.dumps(e.to_dict(), indent=2))
        sys.exit(1)

    doc, errors = apply(profile, tx.segments, interchange.delimiters.element)
    print(json.dumps({
        "document": doc.to_dict(),
        "errors": [e.describe() for e in errors],
    }, indent=2))
    if errors:
        sys.exit(1)


if __name__ == "__main__":
    main()
