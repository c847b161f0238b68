import json
from typing import Any

from .label import Label

LABEL_SENTINEL = "$rules_rust_label"


def encode_json(obj, *, pretty: bool = False) -> str:
    if pretty:
        return json.dumps(obj, sort_keys=True, indent=2, cls=_RulesJSONEncoder)
    return json.dumps(
        obj,
        sort_keys=True,
        # No extra spaces around separators
        separators=(",", ":"),
        cls=_RulesJSONEncoder,
    )


def decode_json(data: str) -> Any:
    return json.loads(data, object_hook=_decode_json_object)


class _RulesJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        from .action import Action
        from .artifact import File
        from .config import Option
        from .depset import Depset
        from .provider import Provider
        from .rule import Target

        if isinstance(obj, Label):
            return {LABEL_SENTINEL: str(obj)}
        elif isinstance(obj, File):
            return obj.to_json()
        elif isinstance(obj, Depset):
            return [self.default(item) for item in obj.to_list()]
        elif isinstance(obj, (Action, Provider)):
            return self.default(obj.to_json())
        elif isinstance(obj, Target):
            return self.default(obj.label)
        elif isinstance(obj, type) and issubclass(obj, Option):
            return obj.to_json()
        elif isinstance(obj, dict):
            return {str(k) if isinstance(k, Label) else k: self.default(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self.default(item) for item in obj]
        elif isinstance(obj, (str, bool, int, float, type(None))):
            return obj
        else:
            return json.JSONEncoder.default(self, obj)


def _decode_json_object(obj):
    from .artifact import _JSON_FILE_SENTINEL

    if LABEL_SENTINEL in obj:
        return Label(obj[LABEL_SENTINEL])
    elif _JSON_FILE_SENTINEL in obj:
        # Decoded files lose their ownership information, only the exec path survives the round trip
        return obj[_JSON_FILE_SENTINEL]
    else:
        return obj
