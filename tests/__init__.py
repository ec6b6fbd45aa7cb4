# Empty file to make directory a package
