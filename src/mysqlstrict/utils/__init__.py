from mysqlstrict.utils.connection_utils import create_url_from_options
from mysqlstrict.utils.connection_utils import dispose_all_engines
from mysqlstrict.utils.connection_utils import get_engine_for_options
