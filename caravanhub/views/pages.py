"""Render HTML pages for the site."""

from datetime import datetime, timezone
from urllib.parse import quote, urlencode

from caravanhub.config.settings import SiteConfig
from caravanhub.gallery.carousel import Carousel
from caravanhub.gallery.lightbox import Lightbox
from caravanhub.models.listing import ALL_STANDARDS, STANDARD_FILTERS, STANDARDS, Listing, ListingDraft
from caravanhub.models.user import AppUser

BUTTON = "inline-flex items-center px-3 py-2 rounded-md bg-blue-600 hover:bg-blue-500 border border-blue-300/40 text-slate-100 text-sm"
GHOST_BUTTON = "inline-flex items-center px-3 py-2 rounded-md text-slate-200 hover:text-white text-sm"
INPUT = "w-full rounded-md px-3 py-2 bg-blue-900/40 border border-blue-400/30 text-slate-100 placeholder:text-slate-400"
CARD = "h-full bg-blue-900/40 border border-blue-500/30 rounded-xl overflow-hidden flex flex-col"

STANDARD_BADGE_CLASSES = {
    "Gold": "bg-yellow-500/20 text-yellow-100 border-yellow-400/40",
    "Silver": "bg-slate-200/20 text-slate-100 border-slate-300/40",
    "Bronze": "bg-orange-500/20 text-orange-100 border-orange-400/40",
}
STANDARD_ICONS = {"Gold": "&#128081;", "Silver": "&#127941;", "Bronze": "&#11088;"}


def escape_html(text: str) -> str:
    """Escape HTML special characters.

    Args:
        text: The text to escape

    Returns:
        Text with HTML entities escaped (safe in attributes too)
    """
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def format_when(created_at: datetime, now: datetime | None = None) -> str:
    """Describe a timestamp relative to now in whole days ("today", "3 days ago")."""
    now = now or datetime.now(timezone.utc)
    days = round((created_at - now).total_seconds() / 86400)
    if days == 0:
        return "today"
    if days == -1:
        return "yesterday"
    if days == 1:
        return "tomorrow"
    if days < 0:
        return f"{-days} days ago"
    return f"in {days} days"


def standard_badge(standard: str) -> str:
    classes = STANDARD_BADGE_CLASSES.get(standard, STANDARD_BADGE_CLASSES["Bronze"])
    label = standard if standard in STANDARDS else "Bronze"
    icon = STANDARD_ICONS.get(label, STANDARD_ICONS["Bronze"])
    return (
        f'<span class="inline-flex items-center gap-1">{icon} '
        f'<span class="px-2 py-1 rounded-full text-xs font-semibold border {classes}">{label}</span></span>'
    )


def contact_mailto(listing: Listing) -> str:
    subject = quote(f"Enquiry about {listing.title}")
    return f"mailto:{listing.contact_email}?subject={subject}"


def render_errors(errors: list[str]) -> str:
    if not errors:
        return ""
    items = "".join(f"<li>{escape_html(e)}</li>" for e in errors)
    return f'<ul class="errors text-sm text-red-300 space-y-1">{items}</ul>'


def render_message(message: str | None) -> str:
    if not message:
        return ""
    return (
        '<div class="max-w-6xl mx-auto px-4 pt-3">'
        f'<p class="message rounded-lg bg-blue-800/50 border border-blue-400/30 px-3 py-2 text-sm">{escape_html(message)}</p>'
        "</div>"
    )


def render_layout(
    site: SiteConfig,
    body: str,
    user: AppUser | None = None,
    query: str = "",
    title: str | None = None,
    message: str | None = None,
) -> str:
    """Wrap page content with the navbar, signed-in chip and footer."""
    page_title = f"{escape_html(title)} - {escape_html(site.name)}" if title else escape_html(site.name)

    if user:
        actions = (
            f'<a href="/listings/new" class="{BUTTON}">+ Add Listing</a>'
            '<form method="post" action="/logout" class="inline">'
            f'<button type="submit" class="{GHOST_BUTTON}">Sign out</button></form>'
        )
        admin_badge = (
            '<span class="ml-1 px-2 py-0.5 rounded bg-blue-500/20 border border-blue-300/40 text-blue-100">Admin</span>'
            if user.is_admin
            else ""
        )
        chip = (
            '<div class="max-w-6xl mx-auto px-4 pt-3"><div class="flex justify-end">'
            '<div class="inline-flex items-center gap-2 rounded-lg bg-blue-900/40 border border-blue-400/30 px-3 py-1.5 text-sm text-blue-100">'
            f'<span class="opacity-80">Logged in as</span><span class="font-semibold text-white">{escape_html(user.name)}</span>'
            f"{admin_badge}</div></div></div>"
        )
    else:
        actions = (
            f'<a href="/login" class="{BUTTON}">Sign in</a>'
            f'<a href="/register" class="{GHOST_BUTTON} border border-blue-300/40">Register</a>'
        )
        chip = ""

    footer_contact = (
        f" To contact the administrator of this page please email: {escape_html(site.admin_contact)}"
        if site.admin_contact
        else ""
    )
    year = datetime.now().year

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{page_title}</title>
<script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="min-h-screen bg-gradient-to-b from-blue-900 via-blue-950 to-black text-slate-100">
<nav class="sticky top-0 z-50 backdrop-blur bg-blue-900/50 border-b border-white/10">
  <div class="max-w-6xl mx-auto px-4 py-3 flex items-center justify-between gap-4">
    <a href="/" class="text-lg font-semibold tracking-wide">&#9978; {escape_html(site.name)}</a>
    <form method="get" action="/" class="hidden md:flex items-center gap-2">
      <input name="q" value="{escape_html(query)}" placeholder="Search caravans, locations, owners..." class="w-80 {INPUT}">
      <button type="submit" class="{BUTTON}">Search</button>
    </form>
    <div class="flex items-center gap-2">{actions}</div>
  </div>
</nav>
{chip}
{render_message(message)}
{body}
<footer class="border-t border-white/10">
  <div class="max-w-6xl mx-auto px-4 py-8 text-sm text-blue-100/70">
    <p>&copy; {year} {escape_html(site.name)}. Built for showcasing and contact-only enquiries.{footer_contact}</p>
  </div>
</footer>
</body>
</html>"""


def render_carousel(carousel: Carousel, page_url: str, gallery_url: str | None = None) -> str:
    """Render the current slide with prev/next controls and dots.

    Args:
        carousel: Carousel state (index already clamped)
        page_url: URL that shows this carousel; `image=<i>` is appended
        gallery_url: Lightbox URL; `index=<i>` is appended. Without one the
            slide is not clickable.

    Returns:
        HTML for the carousel
    """
    sep = "&amp;" if "?" in page_url else "?"
    index = carousel.index
    frame = "block aspect-video overflow-hidden rounded-xl border border-blue-400/20"
    image = f'<img src="{escape_html(carousel.current)}" alt="Image {index + 1}" class="w-full h-full object-cover">'
    html = ['<div class="carousel relative">']
    if gallery_url:
        html.append(f'<a href="{escape_html(gallery_url)}?index={index}" class="{frame}">{image}</a>')
    else:
        html.append(f'<div class="{frame}">{image}</div>')
    if carousel.has_controls:
        prev_index = max(0, index - 1)
        next_index = min(carousel.last_index, index + 1)
        control = "absolute top-1/2 -translate-y-1/2 p-2 rounded-full bg-black/40 hover:bg-black/60 text-white"
        html.append(
            f'<a href="{escape_html(page_url)}{sep}image={prev_index}" class="{control} left-2" aria-label="Previous image">&lsaquo;</a>'
        )
        html.append(
            f'<a href="{escape_html(page_url)}{sep}image={next_index}" class="{control} right-2" aria-label="Next image">&rsaquo;</a>'
        )
        dots = []
        for i in range(len(carousel.images)):
            shade = "bg-white" if i == index else "bg-white/50"
            dots.append(
                f'<a href="{escape_html(page_url)}{sep}image={i}" class="dot h-1.5 w-1.5 rounded-full {shade}"></a>'
            )
        html.append(f'<div class="absolute bottom-2 left-0 right-0 flex justify-center gap-1">{"".join(dots)}</div>')
    html.append("</div>")
    return "".join(html)


def render_listing_card(listing: Listing, site: SiteConfig, user: AppUser | None, now: datetime | None = None) -> str:
    carousel = Carousel(listing.gallery_images(site.placeholder_image), placeholder=site.placeholder_image)
    ring = " ring-2 ring-blue-300/60" if listing.is_featured else ""
    image_count = (
        f'<span class="text-xs text-blue-100/70">{len(listing.images)} photos</span>' if len(listing.images) > 1 else ""
    )
    phone = (
        f'<div><a href="tel:{escape_html(listing.contact_phone)}" class="hover:underline">{escape_html(listing.contact_phone)}</a></div>'
        if listing.contact_phone
        else ""
    )

    admin_actions = ""
    if user and user.is_admin:
        feature_label = "Featured" if listing.is_featured else "Feature"
        admin_actions = (
            f'<form method="post" action="/listings/{escape_html(listing.id)}/feature" class="inline">'
            f'<button type="submit" class="{BUTTON}" title="Set as featured">{feature_label}</button></form>'
            f'<form method="post" action="/listings/{escape_html(listing.id)}/delete" class="inline">'
            '<button type="submit" class="inline-flex items-center px-3 py-2 rounded-md bg-red-600 hover:bg-red-500 text-sm">Delete</button></form>'
        )

    detail_url = f"/listings/{listing.id}"
    return f"""<div class="listing-card {CARD}{ring}" id="listing-{escape_html(listing.id)}">
  <div class="p-3">{render_carousel(carousel, detail_url, f"{detail_url}/gallery")}{image_count}</div>
  <div class="px-4">
    <h3 class="flex items-center justify-between gap-2 text-slate-100 font-semibold">
      <a href="{escape_html(detail_url)}" class="truncate">{escape_html(listing.title)}</a>{standard_badge(listing.standard)}
    </h3>
    <div class="mt-2 space-y-1 text-sm text-blue-100/80">
      <div>&#128205; {escape_html(listing.location)}</div>
      <div>Listed {format_when(listing.created_at, now)}</div>
      <div><a href="mailto:{escape_html(listing.contact_email)}" class="hover:underline">{escape_html(listing.contact_email)}</a></div>
      {phone}
    </div>
  </div>
  <div class="mt-auto p-4 flex flex-wrap items-center gap-2">
    <a href="{escape_html(contact_mailto(listing))}" class="{BUTTON}">Contact Owner</a>
    {admin_actions}
  </div>
</div>"""


def home_url(query: str = "", standard: str = ALL_STANDARDS) -> str:
    """Landing page URL that keeps the active search and standard tab."""
    params = {}
    if query:
        params["q"] = query
    if standard != ALL_STANDARDS:
        params["standard"] = standard
    return f"/?{urlencode(params)}" if params else "/"


def render_filters(query: str, standard: str) -> str:
    tabs = []
    for value in STANDARD_FILTERS:
        params = {"standard": value}
        if query:
            params["q"] = query
        active = "bg-blue-700 text-white" if value == standard else "text-slate-200"
        tabs.append(f'<a href="/?{urlencode(params)}" class="tab px-3 py-1.5 rounded-md {active}">{value}</a>')
    return f"""<section class="max-w-6xl mx-auto px-4 py-6">
  <div class="flex flex-col md:flex-row items-start md:items-center justify-between gap-4">
    <div class="inline-flex gap-1 rounded-lg bg-blue-900/40 border border-blue-400/30 p-1">{"".join(tabs)}</div>
    <form method="get" action="/" class="flex items-center gap-2 md:hidden w-full">
      <input name="q" value="{escape_html(query)}" placeholder="Search caravans, locations, owners..." class="flex-1 {INPUT}">
      <input type="hidden" name="standard" value="{escape_html(standard)}">
      <button type="submit" class="{BUTTON}">Search</button>
    </form>
  </div>
</section>"""


def render_home(
    site: SiteConfig,
    listings: list[Listing],
    featured: Listing | None,
    user: AppUser | None = None,
    query: str = "",
    standard: str = ALL_STANDARDS,
    hero_index: int = 0,
    message: str | None = None,
    now: datetime | None = None,
) -> str:
    """Render the landing page: hero with the featured listing, filters and the listing grid."""
    if featured:
        hero_carousel = Carousel(featured.gallery_images(site.placeholder_image), placeholder=site.placeholder_image)
        hero_carousel.scroll_to(hero_index)
        hero_title = f"Featured &ndash; {escape_html(featured.title)}"
        hero_location = featured.location
        hero = render_carousel(hero_carousel, home_url(query, standard), f"/listings/{featured.id}/gallery")
    else:
        hero_title = "Featured &ndash; Pick a listing"
        hero_location = site.fallback_location
        hero = render_carousel(Carousel([], placeholder=site.placeholder_image), "/")

    add_button = (
        f'<a href="/listings/new" class="{BUTTON}">+ Add your caravan</a>'
        if user
        else '<p class="text-sm text-blue-100/70">Sign in or register to create a listing.</p>'
    )
    admin_tip = (
        '<p class="mt-2 text-xs text-blue-100/70">Tip: Use the &ldquo;Feature&rdquo; button on any card below.</p>'
        if user and user.is_admin
        else ""
    )

    if listings:
        grid = "".join(render_listing_card(listing, site, user, now) for listing in listings)
        grid = f'<div class="grid sm:grid-cols-2 lg:grid-cols-3 gap-6">{grid}</div>'
    else:
        hint = "Add your first caravan!" if user else "Sign in to add a listing."
        grid = f'<div class="empty text-center text-blue-100/80 py-16">No listings yet. {hint}</div>'

    body = f"""<header class="relative overflow-hidden">
  <div class="max-w-6xl mx-auto px-4 py-12 md:py-16 grid md:grid-cols-2 gap-8 items-center">
    <div>
      <h1 class="text-3xl md:text-5xl font-extrabold leading-tight text-white">Promote &amp; Share Your <span class="text-blue-300">Caravan</span></h1>
      <p class="mt-3 text-blue-100/80 max-w-prose">Showcase caravans from Bronze to Gold. Each listing highlights contact details so guests can reach out directly.</p>
      <div class="mt-6 flex items-center gap-3">{add_button}</div>
    </div>
    <div class="relative">
      <div class="hero {CARD} p-4">
        <h2 class="font-semibold text-slate-100 mb-3">&#10024; {hero_title}</h2>
        {hero}
        <div class="mt-3 text-sm text-blue-100/80">&#128205; {escape_html(hero_location)}</div>
      </div>
      {admin_tip}
    </div>
  </div>
</header>
{render_filters(query, standard)}
<main class="max-w-6xl mx-auto px-4 pb-16">{grid}</main>"""
    return render_layout(site, body, user=user, query=query, message=message)


def render_listing_detail(
    site: SiteConfig, listing: Listing, carousel: Carousel, user: AppUser | None = None, now: datetime | None = None
) -> str:
    detail_url = f"/listings/{listing.id}"
    body = f"""<main class="max-w-3xl mx-auto px-4 py-10 space-y-6">
  <a href="/" class="text-sm text-blue-200 hover:underline">&larr; All listings</a>
  <h1 class="text-3xl font-bold text-white flex items-center gap-3">{escape_html(listing.title)} {standard_badge(listing.standard)}</h1>
  {render_carousel(carousel, detail_url, f"{detail_url}/gallery")}
  <p class="text-sm text-blue-100/70">Image {carousel.index + 1} of {len(carousel.images)}</p>
  {render_listing_card(listing, site, user, now)}
</main>"""
    return render_layout(site, body, user=user, title=listing.title)


def render_lightbox(site: SiteConfig, listing: Listing, lightbox: Lightbox) -> str:
    """Render the full-screen viewer; arrow keys map to prev/next and Escape closes."""
    base = f"/listings/{listing.id}/gallery"
    prev_index, next_index = lightbox.neighbours()
    close_url = f"/listings/{listing.id}?image={lightbox.index}"
    controls = ""
    if len(lightbox.images) > 1:
        control = "absolute top-1/2 -translate-y-1/2 p-3 rounded-full bg-black/50 hover:bg-black/70 text-white text-2xl"
        controls = (
            f'<a id="lightbox-prev" href="{base}?index={prev_index}" class="{control} left-4" aria-label="Previous image">&lsaquo;</a>'
            f'<a id="lightbox-next" href="{base}?index={next_index}" class="{control} right-4" aria-label="Next image">&rsaquo;</a>'
        )
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{escape_html(listing.title)} - {escape_html(site.name)}</title>
<script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="bg-black/90 text-white">
<div class="lightbox relative w-[96vw] h-[92vh] mx-auto my-[4vh]">
  <a id="lightbox-close" href="{escape_html(close_url)}" class="absolute right-4 top-4 z-10 text-white/80 hover:text-white" aria-label="Close">&times;</a>
  <a href="{base}?index={next_index}" class="block w-full h-[85vh] overflow-hidden rounded-xl">
    <img src="{escape_html(lightbox.current)}" alt="Image {lightbox.index + 1}" class="w-full h-full object-contain bg-black">
  </a>
  {controls}
</div>
<script>
document.addEventListener('keydown', function(e) {{
  var target = null;
  if (e.key === 'ArrowRight') target = document.getElementById('lightbox-next');
  else if (e.key === 'ArrowLeft') target = document.getElementById('lightbox-prev');
  else if (e.key === 'Escape') target = document.getElementById('lightbox-close');
  if (target) window.location.href = target.href;
}});
</script>
</body>
</html>"""


def render_sign_in(site: SiteConfig, email: str = "", errors: list[str] | None = None) -> str:
    body = f"""<main class="max-w-md mx-auto px-4 py-12">
  <div class="{CARD} p-6 space-y-4">
    <h1 class="text-xl font-semibold">Sign in</h1>
    <p class="text-sm text-blue-100/70">Sign in with your email and password.</p>
    {render_errors(errors or [])}
    <form method="post" action="/login" class="space-y-3">
      <label class="block text-sm" for="email">Email</label>
      <input id="email" name="email" type="email" value="{escape_html(email)}" class="{INPUT}">
      <label class="block text-sm" for="password">Password</label>
      <input id="password" name="password" type="password" class="{INPUT}">
      <button type="submit" class="{BUTTON}">Continue</button>
    </form>
  </div>
</main>"""
    return render_layout(site, body, title="Sign in")


def render_register(
    site: SiteConfig, name: str = "", email: str = "", errors: list[str] | None = None, message: str | None = None
) -> str:
    body = f"""<main class="max-w-md mx-auto px-4 py-12">
  <div class="{CARD} p-6 space-y-4">
    <h1 class="text-xl font-semibold">Create an account</h1>
    <p class="text-sm text-blue-100/70">Email and password sign-up. Your role is managed by the site administrator.</p>
    {render_errors(errors or [])}
    <form method="post" action="/register" class="space-y-3">
      <label class="block text-sm" for="rname">Name</label>
      <input id="rname" name="name" value="{escape_html(name)}" class="{INPUT}">
      <label class="block text-sm" for="remail">Email</label>
      <input id="remail" name="email" type="email" value="{escape_html(email)}" class="{INPUT}">
      <label class="block text-sm" for="rpass">Password</label>
      <input id="rpass" name="password" type="password" class="{INPUT}">
      <button type="submit" class="{BUTTON}">Register</button>
    </form>
  </div>
</main>"""
    return render_layout(site, body, title="Register", message=message)


def render_add_listing(
    site: SiteConfig, user: AppUser, draft: ListingDraft | None = None, errors: list[str] | None = None
) -> str:
    draft = draft or ListingDraft()
    options = "".join(
        f'<option value="{s}"{" selected" if s == draft.standard else ""}>{s}</option>' for s in STANDARDS
    )
    body = f"""<main class="max-w-xl mx-auto px-4 py-12">
  <div class="{CARD} p-6 space-y-4">
    <h1 class="text-xl font-semibold">Add a caravan listing</h1>
    <p class="text-sm text-blue-100/70">Up to {site.max_images} images; the first image becomes the cover.</p>
    {render_errors(errors or [])}
    <form method="post" action="/listings" enctype="multipart/form-data" class="space-y-3">
      <label class="block text-sm" for="title">Title</label>
      <input id="title" name="title" value="{escape_html(draft.title)}" placeholder="e.g., Family Caravan by the Sea" class="{INPUT}">
      <label class="block text-sm" for="standard">Standard</label>
      <select id="standard" name="standard" class="{INPUT}">{options}</select>
      <label class="block text-sm" for="location">Location</label>
      <input id="location" name="location" value="{escape_html(draft.location)}" placeholder="Town / Park / County" class="{INPUT}">
      <label class="block text-sm" for="cname">Contact Name</label>
      <input id="cname" name="contact_name" value="{escape_html(draft.contact_name)}" class="{INPUT}">
      <label class="block text-sm" for="cemail">Contact Email</label>
      <input id="cemail" name="contact_email" type="email" value="{escape_html(draft.contact_email)}" class="{INPUT}">
      <label class="block text-sm" for="cphone">Contact Phone (optional)</label>
      <input id="cphone" name="contact_phone" value="{escape_html(draft.contact_phone or "")}" class="{INPUT}">
      <label class="block text-sm" for="images">Images</label>
      <input id="images" name="images" type="file" accept="image/*" multiple class="{INPUT}">
      <button type="submit" class="{BUTTON}">Save listing</button>
    </form>
  </div>
</main>"""
    return render_layout(site, body, user=user, title="Add listing")
