import logging
import os
import subprocess
import traceback
from logging.handlers import RotatingFileHandler
from datetime import datetime

# -------------------------
# Configuração inicial
# -------------------------
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

_root_logger = logging.getLogger("eobuild")
_root_logger.setLevel(logging.DEBUG)  # captura tudo


class ColorFormatter(logging.Formatter):
    """Formata mensagens com cores para o console"""
    COLORS = {
        logging.DEBUG: "\033[36m",   # ciano
        logging.INFO: "\033[32m",    # verde
        logging.WARNING: "\033[33m", # amarelo
        logging.ERROR: "\033[31m",   # vermelho
        logging.CRITICAL: "\033[41m" # fundo vermelho
    }
    RESET = "\033[0m"

    def __init__(self, fmt=None, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record):
        ts = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        module = f"[{record.name}]" if record.name != "eobuild" else ""
        msg = super().format(record)
        if not self.use_colors:
            return f"[{ts}] {record.levelname.lower():<8}{module} {msg}"
        color = self.COLORS.get(record.levelno, self.RESET)
        return f"{color}[{ts}] {record.levelname.lower():<8}{module}{self.RESET} {msg}"


_console = logging.StreamHandler()
_console.setLevel(logging.INFO)
_console.setFormatter(ColorFormatter("%(message)s"))
_file_handler = None


def _setup_handlers():
    """Configura o handler de console (o de arquivo é opcional, ver enable_file_log)"""
    if _console in _root_logger.handlers:
        return  # já configurado
    _root_logger.addHandler(_console)


_setup_handlers()


# -------------------------
# API pública
# -------------------------
def get_logger(name: str = "eobuild"):
    """Obtém sub-logger (ex.: log.get_logger("overlay"))"""
    if name == "eobuild":
        return _root_logger
    return _root_logger.getChild(name)


def set_level(level: str):
    """Altera nível do console"""
    lvl = LEVELS.get(level.lower())
    if lvl is None:
        raise ValueError(f"Nível inválido: {level}")
    _console.setLevel(lvl)


def disable_colors():
    """Desliga as cores ANSI do console (--no-color)"""
    _console.setFormatter(ColorFormatter("%(message)s", use_colors=False))


def enable_file_log(log_dir: str) -> str | None:
    """
    Adiciona o log rotativo em arquivo (eobuild.log).
    Retorna o caminho do arquivo, ou None se o diretório não puder ser criado.
    """
    global _file_handler
    if _file_handler is not None:
        return _file_handler.baseFilename
    try:
        os.makedirs(log_dir, exist_ok=True)
        logfile = os.path.join(log_dir, "eobuild.log")
        fh = RotatingFileHandler(logfile, maxBytes=10 * 1024 * 1024, backupCount=5)
    except OSError as e:
        _root_logger.warning("Log em arquivo desativado (%s): %s", log_dir, e)
        return None
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        "%Y-%m-%d %H:%M:%S"
    ))
    _root_logger.addHandler(fh)
    _file_handler = fh
    return logfile


def exception(msg: str):
    """Loga erro com traceback completo"""
    tb = traceback.format_exc()
    _root_logger.error("%s\n%s", msg, tb)


def run_cmd(cmd: list[str], cwd: str | None = None, env: dict | None = None):
    """
    Executa comando externo registrando a saída (stdout+stderr) em tempo real.
    Retorna (returncode, output).
    """
    logger = get_logger("cmd")
    logger.debug("Executando: %s", " ".join(cmd))

    process = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1
    )

    lines = []
    for line in process.stdout:
        line = line.rstrip()
        lines.append(line)
        logger.debug("%s", line)

    process.wait()
    rc = process.returncode

    if rc != 0:
        logger.debug("Comando falhou com código %s: %s", rc, " ".join(cmd))

    return rc, "\n".join(lines)


# Atalhos simples (sem precisar chamar get_logger)
def debug(msg, *args, **kwargs): _root_logger.debug(msg, *args, **kwargs)
