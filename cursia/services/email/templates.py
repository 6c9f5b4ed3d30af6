from jinja2 import Template

BASE_WRAPPER = """
<div style=\"font-family:Inter,Arial,sans-serif;font-size:16px;line-height:1.6\">
  <h2 style=\"margin:0 0 8px\">Cursia</h2>
  {{ body }}
</div>
"""

WELCOME_HTML = Template(BASE_WRAPPER)

WELCOME_BODY = Template("""
  <p>¡Hola {{ name }}!</p>
  <p>Tu cuenta está lista. Describe lo que quieres aprender y generaremos un curso a tu medida.</p>
  <p><a href=\"{{ url }}\" style=\"display:inline-block;padding:10px 16px;border-radius:8px;background:#7c3aed;color:#fff;text-decoration:none\">Crear mi primer curso</a></p>
  <p style=\"color:#6b7280;font-size:12px\">Tu plan actual es Gratis: 1 curso al mes y acceso a los primeros 2 módulos.</p>
""", autoescape=True)

WELCOME_SUBJECT = "Bienvenido a Cursia"


def render_welcome(name: str, url: str):
  body = WELCOME_BODY.render(name=name, url=url)
  return WELCOME_SUBJECT, WELCOME_HTML.render(body=body)
