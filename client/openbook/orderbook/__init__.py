from .base import *
from .critbit import *
