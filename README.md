# copybird

copybird takes a backup by streaming data through a chain of modules:

```
input  ->  [compress]  ->  [encrypt]  ->  output
```

A restore runs the chain the other way:

```
input  ->  [decrypt]  ->  [decompress]  ->  output
```

Every stage runs in its own thread and hands its bytes to the next one
through an OS pipe, so a dump never has to fit in memory or on local disk
before it is compressed, encrypted and shipped.

## Installation

```
pip install copybird
```

To run the test suite:

```
pip install "copybird[test]"
pytest
```

## Command line

```
copybird backup  -i <module> -o <module> [-z <module>] [-e <module>]
copybird restore -i <module> -o <module> [-z <module>] [-e <module>]
```

| Option | `backup`          | `restore`           |
|--------|-------------------|---------------------|
| `-i`   | `--input`         | `--input`           |
| `-o`   | `--output`        | `--output`          |
| `-z`   | `--compress`      | `--decompress`      |
| `-e`   | `--encrypt`       | `--decrypt`         |

Both commands also accept `-f/--config`, `-c/--connect` and
`-n/--notifier` (the last may be repeated). They are parsed but not acted
on; see "What it does not do" below.

The command exits with 0 when every stage finished, and with 1 when a
module could not be found or set up, or when any stage raised an error.

### Choosing and configuring modules

A module is named by its name, followed by settings, each after a `::`:

```
name::setting=value::other_setting=value
```

Setting names are the module's configuration field names in snake_case.
Text, whole-number and true/false (`1`, `t`, `true`, `0`, `f`, `false`
and their capitalised forms) settings are accepted. Settings that name no
field are ignored. An unknown module name is an error, and so is a value
that cannot be read as the field's type. A value is cut at its first
`=`, so it cannot itself contain `=` or `::`.

Backup modules:

| Stage    | Name      | Settings                                                          |
|----------|-----------|-------------------------------------------------------------------|
| input    | `mysql`   | `dsn` (`user:password@tcp(host:port)/dbname`)                      |
| input    | `mongodb` | `dsn` (a MongoDB connection URI)                                  |
| input    | `local`   | `filename`                                                        |
| input    | `tar`     | `directory_path`                                                  |
| compress | `gzip`    | `level` (-1 to 9, default 3)                                      |
| compress | `lz4`     | `level` (-1 to 9, default 2)                                      |
| encrypt  | `aesgcm`  | `key` (hex-encoded AES key of 16, 24 or 32 bytes)                 |
| output   | `local`   | `file` (default `output`), `default_mask` (open flags; appends by default) |
| output   | `http`    | `target_url`                                                      |
| output   | `scp`     | `addr`, `port`, `user`, `password`, `file_name`, `path_to_key`, `private_key_password` |

Restore modules:

| Stage      | Name     | Settings                      |
|------------|----------|-------------------------------|
| input      | `local`  | `filename`                    |
| decrypt    | `aesgcm` | `key`                         |
| decompress | `gzip`   | none                          |
| decompress | `lz4`    | none                          |
| output     | `mysql`  | `dsn`                         |
| output     | `local`  | `file`, `default_mask`        |

What the modules produce:

- `mysql` input writes an SQL dump: a header, then for each table a
  `DROP TABLE`, its `CREATE TABLE` statement and one `INSERT` holding every
  row, then a completion line. The dump runs inside one transaction.
- `mongodb` input writes, for each collection of each database, a JSON
  header line naming the database, collection and time, followed by one
  JSON line per document.
- `tar` input writes an uncompressed tar archive of the files below the
  directory, with paths relative to it.
- `aesgcm` encrypts in chunks of up to 4096 bytes; each chunk is written
  as a little-endian 32-bit length, a random 12-byte nonce and the
  ciphertext with its 16-byte tag. The restore module reads the same
  framing and fails on a truncated or tampered chunk.
- `mysql` output splits the dump into statements, drops comments, and runs
  those that begin with `SELECT`, `INSERT`, `CREATE`, `DROP`, `ALTER`,
  `RENAME` or `TRUNCATE`.
- `http` output posts the stream as the request body with
  `Content-Type: application/json`.
- `scp` output uploads over SFTP. The server's key must be listed in
  `$HOME/.ssh/known_hosts`; a private key (`path_to_key`, optionally
  protected by `private_key_password`) is used if given, otherwise the
  password.

### Examples

Dump a MySQL database, compress it with gzip and append it to a local file:

```
copybird backup \
  -i 'mysql::dsn=user:password@tcp(localhost:3306)/test' \
  -z 'gzip::level=9' \
  -o 'local::file=backup.sql.gz'
```

Dump every MongoDB collection, compress with lz4, encrypt with AES-GCM and
post the result to an HTTP endpoint:

```
copybird backup \
  -i 'mongodb::dsn=mongodb://localhost:27017' \
  -z lz4 \
  -e "aesgcm::key=$BACKUP_KEY" \
  -o 'http::target_url=http://localhost:8080/upload'
```

Load a gzip-compressed dump back into MySQL:

```
copybird restore \
  -i 'local::filename=backup.sql.gz' \
  -z gzip \
  -o 'mysql::dsn=user:password@tcp(localhost:3306)/test'
```

Each stage logs its configuration, when it finishes and how long it took.
An error inside one stage is logged with the stage's type and name, and
its streams are closed so the other stages do not hang.

## Using it from Python

Every module has the same life cycle:

1. `default_config()` returns a fresh configuration object with the
   module's defaults;
2. `init_module(config)` checks the configuration and prepares the module,
   raising an error if it cannot;
3. `init_pipe(writer, reader)` hands it the streams to write to and read from;
4. `run()` does the work;
5. `close()` releases anything the module holds.

```python
import io

from copybird.compress import GzipCompress, GzipDecompress

source = io.BytesIO(b"hello, world.")
packed = io.BytesIO()

compressor = GzipCompress()
config = compressor.default_config()
config.level = 9
compressor.init_module(config)
compressor.init_pipe(packed, source)
compressor.run()

packed.seek(0)
restored = io.BytesIO()
decompressor = GzipDecompress()
decompressor.init_module(decompressor.default_config())
decompressor.init_pipe(restored, packed)
decompressor.run()
assert restored.getvalue() == b"hello, world."
```

The modules live in `copybird.files`, `copybird.compress`,
`copybird.crypto`, `copybird.mysql`, `copybird.mongodb` and
`copybird.remote`. The registry in `copybird.core` (`register_module`,
`get_module`, `clear_registry`) finds modules by group, type and name;
`copybird.app.register_modules()` fills it with the built-in modules.
`copybird.pipeline.load_module` turns a `name::setting=value` argument
into a ready module, and `copybird.pipeline.Runner` wires the stages
together with pipes, runs them concurrently and returns the
`ModuleError`s they raised.

`copybird.remote` also has `SshConnect` and `SshTunnel`, which forward
connections on a local port through an SSH server to a remote endpoint.
They are usable from Python but are not wired to any command.

## What it does not do

- No notifications: the `-n/--notifier` option is accepted but nothing is
  sent when a backup succeeds or fails.
- No configuration files: `-f/--config` is accepted but not read; modules
  are configured only through `name::setting=value` arguments.
- No connection step: `-c/--connect` is accepted but no tunnel is opened.
- No scheduling and no retention: each command runs one backup or restore
  and exits.
- Only one output per run.