import os
import sys
import tempfile
from pathlib import Path

env = os.environ.get

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(env("CODEARENA_DATA_DIR", str(BASE_DIR / "data")))
CODE_RUNNER_DIR = Path(env("CODE_RUNNER_DIR", str(Path(tempfile.gettempdir()) / "code-runner")))

# Create directories
DATA_DIR.mkdir(parents=True, exist_ok=True)
CODE_RUNNER_DIR.mkdir(parents=True, exist_ok=True)

# Runtimes
PYTHON_PATH = env("PYTHON_EXECUTOR_PATH", sys.executable)
NODE_PATH = env("NODE_PATH", "node")
GCC_PATH = env("GCC_PATH", "gcc")
GPP_PATH = env("CPP_COMPILER_PATH", "g++")
JAVAC_PATH = env("JAVAC_PATH", "javac")
JAVA_PATH = env("JAVA_PATH", "java")

# Language table. Placeholders in commands:
#   {source} source file, {binary} compiled executable,
#   {workdir} invocation directory, {classname} class matched by "entry_class"
LANGUAGES = {
    "javascript": {
        "suffix": ".js",
        "run": [NODE_PATH, "{source}"],
        "judge0_id": 63,
        "comments": [r"//[^\n]*", r"/\*[\s\S]*?\*/"],
    },
    "python": {
        "suffix": ".py",
        "run": [PYTHON_PATH, "{source}"],
        "judge0_id": 71,
        "comments": [r"#[^\n]*"],
    },
    "java": {
        "suffix": ".java",
        "entry_class": r"public\s+class\s+(\w+)",
        "compile": [JAVAC_PATH, "{source}"],
        "run": [JAVA_PATH, "-cp", "{workdir}", "{classname}"],
        "judge0_id": 62,
        "comments": [r"//[^\n]*", r"/\*[\s\S]*?\*/"],
    },
    "cpp": {
        "suffix": ".cpp",
        "compile": [GPP_PATH, "-O2", "{source}", "-o", "{binary}"],
        "run": ["{binary}"],
        "judge0_id": 54,
        "comments": [r"//[^\n]*", r"/\*[\s\S]*?\*/"],
    },
    "c": {
        "suffix": ".c",
        "compile": [GCC_PATH, "-O2", "{source}", "-o", "{binary}", "-lm"],
        "run": ["{binary}"],
        "judge0_id": 50,
        "comments": [r"//[^\n]*", r"/\*[\s\S]*?\*/"],
    },
}
SUPPORTED_LANGUAGES = list(LANGUAGES)

# Local runner settings
RUN_TIMEOUT = float(env("RUN_TIMEOUT", 5))  # seconds
COMPILE_TIMEOUT = float(env("COMPILE_TIMEOUT", 10))  # seconds
MAX_OUTPUT_SIZE = 10 * 1024 * 1024  # 10MB
STALE_SWEEP_EVERY = int(env("STALE_SWEEP_EVERY", 100))  # runs between sweeps
STALE_MAX_AGE = int(env("STALE_MAX_AGE", 24 * 60 * 60))  # seconds

# Remote judge (Judge0)
JUDGE0_BASE_URL = env("JUDGE0_BASE_URL", "https://judge0-ce.p.rapidapi.com")
JUDGE0_API_KEY = env("JUDGE0_API_KEY", "")
JUDGE0_HOST = env("JUDGE0_HOST", "judge0-ce.p.rapidapi.com")
JUDGE0_MOCK_ON_ERROR = env("JUDGE0_MOCK_ON_ERROR", "1").lower() not in ("0", "false", "no")
JUDGE0_SUBMIT_TIMEOUT = 10  # seconds
JUDGE0_POLL_TIMEOUT = 5  # seconds
POLL_INTERVAL = float(env("POLL_INTERVAL", 1))  # seconds
POLL_MAX_ATTEMPTS = int(env("POLL_MAX_ATTEMPTS", 10))
JUDGE0_LIMITS = {
    "cpu_time_limit": 2,
    "cpu_extra_time": 0.5,
    "wall_time_limit": 5,
    "memory_limit": 128000,  # KB
    "max_processes_and_or_threads": 60,
    "enable_per_process_and_thread_time_limit": False,
    "enable_per_process_and_thread_memory_limit": False,
    "max_file_size": 1024,  # KB
    "redirect_stderr_to_stdout": True,
}

# Submission rules
MIN_CODE_LENGTH = int(env("MIN_CODE_LENGTH", 10))
DIFFICULTIES = ("easy", "medium", "hard")

# Logging
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

# Database
DATABASE_URL = env("DATABASE_URL", f"sqlite+aiosqlite:///{DATA_DIR}/codearena.db")
