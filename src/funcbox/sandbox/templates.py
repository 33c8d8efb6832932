"""
Language templates for function bundles.

Each bundle holds the user's source verbatim, an entrypoint that loads it
and calls ``main(event)``, and a driver that runs the entrypoint in a child
process under the function's deadline. Whatever happens, the driver prints
exactly one JSON document to stdout:

- the function's result, or ``{"statusCode": 500, "body": {"error": ...}}``
  when it raised (exit 0)
- ``{"statusCode": 408, "body": {"error": "Function execution timed out"}}``
  after killing the child on deadline (exit 0)
- a 500 document describing a crashed child or malformed child output (exit 1)

Drivers read their deadline and entrypoint from ``manifest.json`` so the
sources below are static.
"""

from dataclasses import dataclass

TIMEOUT_MESSAGE = "Function execution timed out"

PYTHON_ENTRYPOINT = '''\
import asyncio
import contextlib
import inspect
import json
import sys


def error_document(message):
    return {"statusCode": 500, "body": {"error": message}}


def describe(exc):
    return str(exc) or exc.__class__.__name__


async def settle(awaitable):
    return await awaitable


def invoke(event):
    import function

    handler = getattr(function, "main", None)
    if not callable(handler):
        raise TypeError("Function code must define a callable named main(event)")
    result = handler(event)
    if inspect.isawaitable(result):
        result = asyncio.run(settle(result))
    return result


def run():
    raw = sys.stdin.read()
    event = json.loads(raw) if raw.strip() else {}

    # user prints must not corrupt the result document
    with contextlib.redirect_stdout(sys.stderr):
        try:
            result = invoke(event)
        except Exception as e:
            result = error_document(describe(e))

    try:
        document = json.dumps(result, allow_nan=False)
    except (TypeError, ValueError) as e:
        document = json.dumps(error_document("Function result is not JSON serializable: %s" % e))

    sys.stdout.write(document)
    sys.stdout.flush()


if __name__ == "__main__":
    run()
'''

PYTHON_DRIVER = '''\
import json
import os
import signal
import subprocess
import sys

HERE = os.path.dirname(os.path.abspath(__file__))
TIMEOUT_DOCUMENT = {"statusCode": 408, "body": {"error": "%(timeout_message)s"}}


def emit(document, exit_code):
    sys.stdout.write(json.dumps(document))
    sys.stdout.flush()
    sys.exit(exit_code)


def failure(message):
    emit({"statusCode": 500, "body": {"error": message}}, 1)


def kill_tree(proc):
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except OSError:
        proc.kill()


def run():
    with open(os.path.join(HERE, "manifest.json")) as f:
        manifest = json.load(f)

    event = sys.argv[1] if len(sys.argv) > 1 else "{}"
    deadline = manifest["timeoutMs"] / 1000.0

    proc = subprocess.Popen(
        [sys.executable, os.path.join(HERE, manifest["entrypoint"])],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=HERE,
        start_new_session=True,
    )
    try:
        out, err = proc.communicate(event.encode("utf-8"), timeout=deadline)
    except subprocess.TimeoutExpired:
        kill_tree(proc)
        proc.communicate()
        emit(TIMEOUT_DOCUMENT, 0)

    if proc.returncode != 0:
        detail = err.decode("utf-8", "replace").strip()[-2000:]
        failure(detail or "Function process exited with code %%d" %% proc.returncode)

    try:
        document = json.loads(out.decode("utf-8"))
    except ValueError:
        failure("Function produced malformed output")
    emit(document, 0)


if __name__ == "__main__":
    try:
        run()
    except Exception as e:
        failure(str(e) or e.__class__.__name__)
''' % {"timeout_message": TIMEOUT_MESSAGE}

JAVASCRIPT_ENTRYPOINT = """\
'use strict';

function describe(err) {
  if (err && err.message) {
    return String(err.message);
  }
  return String(err);
}

function reply(message) {
  process.send(message, () => process.exit(0));
}

process.once('message', async (event) => {
  let message;
  try {
    const fn = require('./function.js');
    if (typeof fn.main !== 'function') {
      throw new TypeError('Function code must define a callable named main(event)');
    }
    const result = await fn.main(event);
    message = { type: 'result', data: result === undefined ? null : result };
  } catch (err) {
    message = { type: 'error', error: describe(err) };
  }

  try {
    reply(message);
  } catch (err) {
    reply({ type: 'error', error: 'Function result is not JSON serializable: ' + describe(err) });
  }
});
"""

JAVASCRIPT_DRIVER = """\
'use strict';

const { fork } = require('child_process');
const fs = require('fs');
const path = require('path');

const TIMEOUT_DOCUMENT = { statusCode: 408, body: { error: '%(timeout_message)s' } };
const manifest = JSON.parse(fs.readFileSync(path.join(__dirname, 'manifest.json'), 'utf8'));

let child = null;
let timer = null;
let settled = false;
let stderrTail = '';

function finish(document, exitCode) {
  if (settled) {
    return;
  }
  settled = true;
  if (timer) {
    clearTimeout(timer);
  }
  if (child && child.exitCode === null && child.signalCode === null) {
    killTree(child);
  }
  process.stdout.write(JSON.stringify(document), () => process.exit(exitCode));
}

function killTree(proc) {
  try {
    process.kill(-proc.pid, 'SIGKILL');
  } catch (err) {
    proc.kill('SIGKILL');
  }
}

function failure(message) {
  finish({ statusCode: 500, body: { error: message } }, 1);
}

let event = null;
try {
  event = JSON.parse(process.argv[2] || '{}');
} catch (err) {
  failure('Invalid event payload: ' + err.message);
}

if (!settled) {
  // silent: user console output is piped here and discarded
  // detached: own process group, killed as a whole on timeout
  child = fork(path.join(__dirname, manifest.entrypoint), [], { silent: true, detached: true });
  child.stdout.resume();
  child.stderr.on('data', (chunk) => {
    stderrTail = (stderrTail + chunk).slice(-2000);
  });

  timer = setTimeout(() => finish(TIMEOUT_DOCUMENT, 0), manifest.timeoutMs);

  child.on('message', (message) => {
    if (message && message.type === 'result') {
      finish(message.data, 0);
    } else {
      const error = (message && message.error) || 'Unknown error occurred';
      finish({ statusCode: 500, body: { error: error } }, 0);
    }
  });
  child.on('error', (err) => failure(err.message));
  child.on('close', (code, signal) => {
    setImmediate(() => {
      const status = code === null ? signal : code;
      failure(stderrTail.trim() || 'Function process exited with code ' + status);
    });
  });

  child.send(event);
}
""" % {"timeout_message": TIMEOUT_MESSAGE}

JAVASCRIPT_EXPORT_FOOTER = """
;if (typeof main === 'function' && typeof module.exports.main !== 'function') {
  module.exports.main = main;
}
"""


@dataclass(frozen=True)
class LanguageTemplate:
    """File names and sources making up one language's bundle."""

    language: str
    interpreter: str
    function_file: str
    entrypoint_file: str
    driver_file: str
    entrypoint_source: str
    driver_source: str
    export_footer: str = ""

    def render_function(self, code: str) -> str:
        """User source, verbatim, plus whatever exposes ``main`` to the entrypoint."""
        source = code if code.endswith("\n") else code + "\n"
        return source + self.export_footer

    def driver_command(self, event_json: str) -> list[str]:
        return [self.interpreter, self.driver_file, event_json]


TEMPLATES = {
    "javascript": LanguageTemplate(
        language="javascript",
        interpreter="node",
        function_file="function.js",
        entrypoint_file="index.js",
        driver_file="execute.js",
        entrypoint_source=JAVASCRIPT_ENTRYPOINT,
        driver_source=JAVASCRIPT_DRIVER,
        export_footer=JAVASCRIPT_EXPORT_FOOTER,
    ),
    "python": LanguageTemplate(
        language="python",
        interpreter="python",
        function_file="function.py",
        entrypoint_file="entrypoint.py",
        driver_file="execute.py",
        entrypoint_source=PYTHON_ENTRYPOINT,
        driver_source=PYTHON_DRIVER,
    ),
}
