[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "copybird"
version = "0.1.0"
description = "Streaming database and file backups through pluggable input, compress, encrypt and output modules"
requires-python = ">=3.10"
keywords = [
    "backup",
    "restore",
    "mysql",
    "mongodb",
    "tar",
    "gzip",
    "lz4",
    "aes-gcm",
    "sftp",
    "pipeline",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Backup",
    "Topic :: Database",
]
dependencies = [
    "lz4",
    "cryptography",
    "requests",
    "paramiko",
    "pymysql",
    "pymongo",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
copybird = "copybird.app:main"

[tool.hatch.build.targets.wheel]
packages = ["copybird"]

[tool.hatch.build.targets.sdist]
include = ["copybird", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
