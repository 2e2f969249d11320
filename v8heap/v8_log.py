#Copyright 2015 Adam Pridgen
#
#Licensed under the Apache License, Version 2.0 (the "License");
#you may not use this file except in compliance with the License.
#You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
#Unless required by applicable law or agreed to in writing, software
#distributed under the License is distributed on an "AS IS" BASIS,
#WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#See the License for the specific language governing permissions and
#limitations under the License.

import os
import logging
from datetime import datetime

LOGGER_NAME = "v8heap"
DEBUG_ENV_VAR = "V8HEAP_DEBUG"

logger = logging.getLogger(LOGGER_NAME)
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(_handler)
    logger.setLevel(logging.INFO)

DEBUG_MODE = os.environ.get(DEBUG_ENV_VAR, "0") not in ("", "0", "false", "no")


def time_str():
    return str(datetime.now().strftime("%H:%M:%S.%f %m-%d-%Y"))

def set_debug_mode(enabled):
    global DEBUG_MODE
    DEBUG_MODE = bool(enabled)
    return DEBUG_MODE

def is_debug_mode():
    return DEBUG_MODE

def format_msg(msg):
    return "[%s]: %s"%(time_str(), msg)

def log(msg):
    logger.info(format_msg(msg))

def log_debug(msg):
    # diagnostic messages only surface when debug mode is on
    if DEBUG_MODE:
        logger.info(format_msg(msg))

def log_error(msg):
    logger.error(format_msg("Error: %s"%msg))
