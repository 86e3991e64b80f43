"""Agent usage instructions, installed once into the agent's memory file."""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MARKER = "## Secrets Management (secret-agent)"

INSTRUCTIONS = """## Secrets Management (secret-agent)

### Why use secret-agent
- Secrets never appear in agent context windows
- Output is automatically sanitized (secrets replaced with `[REDACTED:NAME]`)
- Prompt injection can't leak secrets you don't have

### Run commands with secrets (preferred)
```bash
# As environment variables (recommended)
secret-agent exec --env API_KEY -- node app.js
secret-agent exec -e KEY1 -e KEY2 -- ./script.sh

# Bucket prefix is stripped: the variable is API_KEY
secret-agent exec --env prod/API_KEY -- node app.js

# Rename: vault secret -> different variable name
secret-agent exec --env MY_SECRET:OPENAI_API_KEY -- python app.py

# Template secrets into a command string (single-line values only)
secret-agent exec -- curl -H 'Authorization: Bearer {{API_KEY}}' https://api.example.com
```

### Create and import secrets
```bash
secret-agent create API_KEY                     # 32-char alphanumeric
secret-agent create API_KEY --length 64 --charset hex
echo "sk-..." | secret-agent import API_KEY
cat private_key.pem | secret-agent import TLS_KEY
secret-agent exec --env TLS_KEY:SSL_KEY -- ./deploy.sh
```

### List and delete
```bash
secret-agent list
secret-agent list --bucket prod
secret-agent delete OLD_SECRET --force
```

### Write secrets to files
```bash
secret-agent inject DB_PASS --file .env --env-format
secret-agent inject DB_PASS --file env.sh --env-format --export
secret-agent inject API_KEY --file config.json --placeholder __API_KEY__
secret-agent env import --file .env.local
secret-agent env export --file .env --all
```

### Never in agent sessions
```bash
secret-agent get API_KEY --unsafe-display
```

If keychain prompts block automation, set `SECRET_AGENT_USE_FILE=1` to keep
the master key in a file instead.
"""


def default_path() -> Path:
    return Path.home() / ".claude" / "CLAUDE.md"


def is_installed(path: Optional[Path] = None) -> bool:
    path = path or default_path()
    try:
        return MARKER in path.read_text()
    except FileNotFoundError:
        return False


def install(path: Optional[Path] = None) -> bool:
    """
    Append the instructions to `path` unless they are already there.

    Returns False when nothing was written.
    """
    path = path or default_path()
    if is_installed(path):
        logger.info("Instructions already present in %s", path)
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        f.write("\n" + INSTRUCTIONS)

    logger.info("Added instructions to %s", path)
    return True
