# reel2recipe/__init__.py
import logging
import os
import platform

__version__ = "0.3.0"

# faster-whisper on Windows needs the CUDA runtime DLLs on the loader path
_DEFAULT_CUDA_BINS = r"C:\Program Files\NVIDIA GPU Computing Toolkit\CUDA\v12.6\bin"

if platform.system() == "Windows":
    for _path in os.environ.get("CUDA_BIN_DIRS", _DEFAULT_CUDA_BINS).split(os.pathsep):
        if os.path.isdir(_path):
            try:
                os.add_dll_directory(_path)
            except OSError as _error:
                logging.getLogger(__name__).debug("Could not add CUDA dir %s: %s", _path, _error)
