"""User-facing messages. The site is in Spanish, so are these."""

UNAUTHORIZED = "Usuario no autenticado"
NOT_FOUND = "Recurso no encontrado"
INTERNAL_ERROR = "Error interno del servidor"
VALIDATION_ERROR = "Error de validación de datos"
FEATURE_DISABLED = "Función no disponible"
INVALID_TOKEN = "Token de autenticación inválido"
TOKEN_VERIFICATION_FAILED = "No se pudo verificar el token de autenticación"
AUTH_CONFIG_INCOMPLETE = "La configuración de autenticación está incompleta"
TOO_MANY_REQUESTS = "Demasiadas solicitudes. Por favor, intenta de nuevo más tarde."

# RSVP
MATCH_NOT_FOUND = "Partido no encontrado"
RSVP_DATA_ERROR = "Error al obtener datos de confirmaciones"
RSVP_LOAD_ERROR = "Error al cargar los datos de confirmación"
RSVP_SUBMIT_ERROR = "Error al enviar la confirmación"
RSVP_NETWORK_ERROR = "No se pudo conectar con el servidor. Inténtalo de nuevo más tarde"
RSVP_SUBMIT_DISABLED = "Las confirmaciones no están disponibles en este momento"
RSVP_CREATED = "Confirmación recibida correctamente"
RSVP_UPDATED = "Confirmación actualizada correctamente"
RSVP_DELETED = "Confirmación eliminada correctamente"
RSVP_DELETE_NOT_FOUND = "Confirmación no encontrada"
RSVP_DELETE_TARGET_REQUIRED = "ID de entrada o email requerido"

# Shirt voting / pre-orders
VOTING_NOT_ACTIVE = "La votación no está activa en este momento"
VOTING_PERIOD_ENDED = "El período de votación ha terminado"
VOTING_ALREADY_VOTED = "Ya has votado anteriormente. Solo se permite un voto por persona"
VOTING_DESIGN_NOT_FOUND = "El diseño seleccionado no existe. Por favor, recarga la página"
VOTING_DATA_ERROR = "Error al cargar los datos de votación"
VOTE_RECORDED = "Voto registrado correctamente"
PRE_ORDER_NOT_ACTIVE = "Los pre-pedidos no están activos en este momento"
PRE_ORDER_PERIOD_ENDED = "El período de pre-pedidos ha terminado"
PRE_ORDER_ALREADY_EXISTS = "Ya tienes un pre-pedido registrado. Solo se permite un pre-pedido por persona"
PRE_ORDER_RECORDED = "Pre-pedido registrado correctamente"

# Merchandise
PRODUCT_NOT_FOUND = "Producto no encontrado"
PRODUCT_ID_REQUIRED = "ID del producto requerido"
PRODUCT_ADDED = "Producto añadido correctamente"
PRODUCT_UPDATED = "Producto actualizado correctamente"
PRODUCT_DELETED = "Producto eliminado correctamente"
MERCHANDISE_DATA_ERROR = "Error al cargar los productos de la tienda"
