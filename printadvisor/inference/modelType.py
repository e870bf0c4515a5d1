import os
from enum import Enum

_ZIP_MAGIC = b"PK\x03\x04"


class ModelType(Enum):
    ONNX = "onnx"
    TORCHSCRIPT = "torchscript"

    @classmethod
    def from_extension(cls, model_path):
        """Determine model type from file extension"""

        extension_map = {
            ".onnx": cls.ONNX,
            ".ort": cls.ONNX,
            ".torchscript": cls.TORCHSCRIPT,
            ".pts": cls.TORCHSCRIPT,
            ".ptl": cls.TORCHSCRIPT,
            ".pt": cls.TORCHSCRIPT,
        }

        ext = os.path.splitext(os.fspath(model_path))[1].lower()
        model_type = extension_map.get(ext)

        if model_type is None:
            raise ValueError(
                f"Unsupported model format: {ext}. Supported: {list(extension_map.keys())}"
            )

        return model_type

    @classmethod
    def from_source(cls, source):
        """Determine model type from a path or from serialized model bytes.

        TorchScript archives are zip files; any other byte stream is handed
        to ONNX Runtime.
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            if bytes(source[:4]) == _ZIP_MAGIC:
                return cls.TORCHSCRIPT
            return cls.ONNX
        return cls.from_extension(source)
