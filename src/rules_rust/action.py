import hashlib
import re
from typing import Dict, List, Optional

from ._json import encode_json
from .artifact import File
from .depset import Depset
from .exec import Executable
from .label import Label

_JSON_ACTION_SENTINEL = "$rules_rust_action"

_CAMEL_TO_SNAKE_REGEX = re.compile(r"(?<!^)(?=[A-Z])")

_ACTION_DISCRIM_MAP = {}


class ActionMeta(type):
    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)

        # Default discriminator based on class name
        cls._json_discrim = _CAMEL_TO_SNAKE_REGEX.sub("_", name).lower()

        _ACTION_DISCRIM_MAP[cls._json_discrim] = cls


class Action(metaclass=ActionMeta):
    owner: Optional[Label]

    def __init__(self, *, mnemonic: str, progress_message: str, **kwargs):
        self.mnemonic = mnemonic
        self.progress_message = progress_message
        self.owner = None

        self._id = None

        for var_name in self.__class__.__annotations__:
            if var_name == "owner":
                continue
            setattr(self, var_name, kwargs[var_name])

    @property
    def id(self) -> str:
        if self._id is None:
            self._id = hashlib.sha256(encode_json(self._content_json()).encode("utf-8")).hexdigest()
        return self._id

    @property
    def outputs(self) -> List[File]:
        raise NotImplementedError

    @property
    def inputs(self) -> Depset:
        return Depset()

    def _content_json(self):
        data = {
            _JSON_ACTION_SENTINEL: self.__class__._json_discrim,
            "mnemonic": self.mnemonic,
            "progress_message": self.progress_message,
            "owner": self.owner,
        }
        for var_name in self.__class__.__annotations__:
            if var_name == "owner":
                continue
            data[var_name] = getattr(self, var_name)
        return data

    def to_json(self):
        data = self._content_json()
        data["id"] = self.id
        return data

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.mnemonic} {self.progress_message!r}>"


class Run(Action):
    executable: Executable
    arguments: List[str]
    run_inputs: Depset
    run_outputs: List[File]
    env: Dict[str, str]
    tools: Depset

    @property
    def outputs(self) -> List[File]:
        return list(self.run_outputs)

    @property
    def inputs(self) -> Depset:
        return Depset(transitive=[self.run_inputs, self.tools, self.executable.files])

    @property
    def command_line(self) -> List[str]:
        return [self.executable.executable_path, *self.arguments]


class WriteFile(Action):
    output: File
    content: str
    is_executable: bool

    @property
    def outputs(self) -> List[File]:
        return [self.output]
