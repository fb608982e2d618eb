"""Export JSON schemas for StructuredItinerary and Action."""

import json
from pathlib import Path

from compass.app.models import Action, StructuredItinerary


def main() -> None:
    """Export schemas to docs/schemas/."""
    schemas_dir = Path("docs/schemas")
    schemas_dir.mkdir(parents=True, exist_ok=True)

    # Wire shape uses camelCase aliases
    itinerary_schema = StructuredItinerary.model_json_schema(by_alias=True)
    itinerary_path = schemas_dir / "StructuredItinerary.schema.json"
    with open(itinerary_path, "w") as f:
        json.dump(itinerary_schema, f, indent=2)
    print(f"Exported StructuredItinerary schema to {itinerary_path}")

    action_schema = Action.model_json_schema()
    action_path = schemas_dir / "Action.schema.json"
    with open(action_path, "w") as f:
        json.dump(action_schema, f, indent=2)
    print(f"Exported Action schema to {action_path}")


if __name__ == "__main__":
    main()
