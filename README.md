# sopskit

Building blocks for keeping secrets inside ordinary configuration files.

sopskit encrypts individual values with 256-bit AES-GCM and writes them in
the `ENC[AES256_GCM,data:...,iv:...,tag:...,type:...]` form. It wraps a
data key with master keys (age X25519 recipients or Azure Key Vault keys),
works out a file's format from its name, compares key groups, hands audit
events to registered auditors, and runs commands with decrypted content
passed through the environment or a temporary file.

It needs Python 3.10 or later and depends on `cryptography`, `pyyaml` and
`requests`. The tests use `pytest` and `hypothesis` (the `test` extra).

## Encrypting values (`sopskit.cipher`)

```python
import os

from sopskit.cipher import Cipher, Comment

cipher = Cipher()
data_key = os.urandom(32)

ciphertext = cipher.encrypt("secret", data_key, "database:password:")
assert ciphertext.startswith("ENC[AES256_GCM,")
assert cipher.decrypt(ciphertext, data_key, "database:password:") == "secret"
```

`Cipher.encrypt` accepts `str`, `int` (64-bit range), `float`, `bool` and
`Comment` values and records the type in the ciphertext; `Cipher.decrypt`
gives the value back with that type (a stored `bytes` type decrypts to
`bytes`). Empty strings and empty comments encrypt to `""`, and decrypting
`""` returns `""`. Other types raise `TypeError`; a malformed ciphertext,
a wrong key or wrong additional data raises `ValueError`.

A `Cipher` remembers the IV of every value it decrypted, so encrypting the
same value again with the same additional data gives the same ciphertext.

## The age format (`sopskit.agecrypt`)

A self-contained implementation of age files with X25519 recipients:

- `parse_x25519_recipient(text)` parses an `age1...` public key into an
  `X25519Recipient`.
- `parse_identities(text)` parses `AGE-SECRET-KEY-1...` lines into
  `X25519Identity` objects, skipping blank lines and `#` comments.
- `encrypt(data, recipients)` and `decrypt(data, identities)` work on the
  binary file format.
- `armor(data)` and `dearmor(text)` add and remove the
  `-----BEGIN AGE ENCRYPTED FILE-----` armor.

All failures raise `AgeError`.

## age master keys (`sopskit.agekey`)

```python
from sopskit.agekey import ParsedIdentities, master_keys_from_recipients

keys = master_keys_from_recipients("age1...,age1...")
for key in keys:
    key.encrypt(data_key)
    print(key.to_map())          # {"recipient": ..., "enc": ...}

identities = ParsedIdentities()
with open("keys.txt") as handle:
    identities.import_identities(handle.read())
identities.apply_to_master_key(keys[0])
assert keys[0].decrypt() == data_key
```

`master_keys_from_recipients("")` returns an empty list; surrounding
spaces around each recipient are stripped. `MasterKey.encrypt_if_needed`
only encrypts when no encrypted key is stored yet, and `needs_rotation`
is always `False`.

When no identities have been applied, `MasterKey.decrypt` calls
`load_identities`, which reads them from the `SOPS_AGE_KEY` environment
variable, the file named by `SOPS_AGE_KEY_FILE`, and `sops/age/keys.txt`
under the user configuration directory (`$XDG_CONFIG_HOME`, or the
platform's equivalent). At least one of these must be present.

## Azure Key Vault master keys (`sopskit.azkv`)

```python
from sopskit.azkv import (
    ClientSecretCredential,
    TokenCredential,
    master_key_from_url,
    master_keys_from_urls,
)

key = master_key_from_url("https://vault.example.com/keys/app-key/v1")
print(key.to_string())   # https://vault.example.com/keys/app-key/v1

credential = ClientSecretCredential("tenant-id", "client-id", "secret")
TokenCredential(credential).apply_to_master_key(key)
key.encrypt(data_key)
assert key.decrypt() == data_key

keys = master_keys_from_urls(
    "https://vault.example.com/keys/app-key/v1,https://vault.example.com/keys/other-key/v2"
)
```

Key URLs must have the form `https://{host}/keys/{name}/{version}`;
anything else raises `ValueError`. Encryption and decryption call the Key
Vault REST API with `RSA-OAEP-256`. Without an applied credential, a
client-secret credential is built from `AZURE_TENANT_ID`,
`AZURE_CLIENT_ID`, `AZURE_CLIENT_SECRET` and, optionally,
`AZURE_AUTHORITY_HOST`. `needs_rotation` is `True` once a key is more than
180 days old, and `to_map` gives `vaultUrl`, `key`, `version`,
`created_at` and `enc`.

## File formats (`sopskit.formats`)

```python
from sopskit.formats import Format, format_for_path, format_for_path_or_string

assert format_for_path("secrets.yaml") is Format.YAML
assert format_for_path_or_string("secrets.yaml", "ini") is Format.INI
assert format_for_path("blob") is Format.BINARY
```

`format_from_string` maps `binary`, `dotenv`, `ini`, `json` and `yaml`,
and falls back to `Format.BINARY`.

## Comparing key groups (`sopskit.keydiff`)

```python
import sys

from sopskit.keydiff import diff_key_groups, pretty_print_diffs

diffs = diff_key_groups(current_groups, wanted_groups)
pretty_print_diffs(diffs, sys.stdout)
```

Groups are compared position by position; keys are any objects with a
`to_string()` method. Each `Diff` lists the keys in `common`, `added` and
`removed`. Output is coloured only when the stream is a terminal.

## Running commands with decrypted content (`sopskit.execute`)

```python
from sopskit.execute import ExecOpts, exec_with_env, exec_with_file

exec_with_env(ExecOpts(command="env", plaintext=b"API_TOKEN=token\n"))
exec_with_file(ExecOpts(command="cat {}", plaintext=b"hello", filename="tmp-file"))
```

Commands run through `/bin/sh -c` (or `cmd.exe /C` on Windows).
`exec_with_env` adds each `NAME=value` line of the plaintext to the
environment, ignoring empty lines, `#` lines and lines without `=`.
`exec_with_file` writes the plaintext to a file in a fresh temporary
directory (or to a named pipe when `fifo=True`, not on Windows), replaces
every `{}` in the command with its path, and removes the directory when
the call returns. A foreground command with a non-zero exit status raises
`subprocess.CalledProcessError`; with `background=True` the `Popen` is
returned at once. Setting `user` switches the whole process to that user
first.

## Auditing (`sopskit.audit`)

```python
from sopskit.audit import Auditor, DecryptEvent, register, submit_event

class PrintAuditor(Auditor):
    def handle(self, event):
        print(event)

register(PrintAuditor())
submit_event(DecryptEvent(file="secrets.yaml"))
```

`load_backend_connection_strings(path)` reads an audit configuration
(default `/etc/sops/audit.yaml`) and returns the
`backends.postgres[].connection_string` values; an unreadable file gives
an empty list and a malformed one raises `ValueError`.

## Exit codes (`sopskit.codes`)

`ExitCode` lists the exit statuses a command-line front end uses, and
`ExitError(message, exit_code)` carries one with its message. If the
message object has a `user_error()` method, its text is used.

## What is not included

sopskit is a library of parts. It has no command-line program, no
key-service server and no editor mode. It does not parse or write YAML,
JSON, INI or dotenv documents, walk document trees or compute message
authentication codes; `sopskit.formats` only names formats. It offers no
master keys besides age and Azure Key Vault, and no ready-made database
auditor: the audit configuration is read, but connecting to the listed
backends is left to the caller.